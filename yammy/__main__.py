"""Entry point for python -m yammy."""
from yammy.cli import main

raise SystemExit(main())
