"""Allow ``python -m src.cli`` execution (runs the recommendation CLI)."""

from src.cli.recommend import main

main()
