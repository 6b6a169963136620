"""Run the git-source command line tool with `python -m git_source`."""

from git_source.tool.git_source import main

if __name__ == "__main__":
    main()
