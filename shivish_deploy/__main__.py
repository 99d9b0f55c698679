"""Allow ``python -m shivish_deploy``."""

from shivish_deploy.cli.main import run

if __name__ == "__main__":
    run()
