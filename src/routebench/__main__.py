"""Allow ``python -m routebench``."""

from routebench.cli import main

raise SystemExit(main())
