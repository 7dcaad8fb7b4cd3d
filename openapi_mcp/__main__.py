"""Entry point: python -m openapi_mcp"""

from .cli import main

if __name__ == "__main__":
    main()
