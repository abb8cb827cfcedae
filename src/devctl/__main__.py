"""devctl 入口点。

支持: python -m devctl
"""

from .app import main

if __name__ == "__main__":
    main()
