from walkthrough.cli import main

main()
