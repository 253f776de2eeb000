# __main__.py
from pipeliner.cli import cli

if __name__ == "__main__":
    cli()
