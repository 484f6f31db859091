"""Info.plist generation for the app bundle."""

import logging
import plistlib
from typing import Optional

log = logging.getLogger(__name__)

EXECUTABLE = "VibeBarApp"
ICON_NAME = "AppIcon"
MINIMUM_SYSTEM_VERSION = "13.0"
FEED_URL = "https://vibebar.yelog.org/appcast.xml"


def build_info_plist(app_name: str, bundle_id: str, version: str,
                     bundle_version: str, *,
                     public_key: Optional[str] = None,
                     feed_url: str = FEED_URL,
                     minimum_system_version: str = MINIMUM_SYSTEM_VERSION,
                     executable: str = EXECUTABLE) -> str:
    info = {
        "CFBundleExecutable": executable,
        "CFBundleIdentifier": bundle_id,
        "CFBundleName": app_name,
        "CFBundleVersion": bundle_version,
        "CFBundleShortVersionString": version,
        "CFBundleIconFile": ICON_NAME,
        "CFBundlePackageType": "APPL",
        "LSMinimumSystemVersion": minimum_system_version,
        "LSUIElement": True,
        "SUFeedURL": feed_url,
    }
    if public_key:
        info["SUPublicEDKey"] = public_key
    else:
        log.warning("No Sparkle public key configured; "
                    "SUPublicEDKey left out of Info.plist")
    return plistlib.dumps(info, sort_keys=False).decode("utf-8")
