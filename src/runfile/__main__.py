from runfile.cli import main

main()
