# main.py - launches the interactive completion shell

from shell_autocompleter.cli.cli import main

if __name__ == "__main__":
    main()
