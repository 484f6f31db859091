from vibebar_release.cli import main

main()
