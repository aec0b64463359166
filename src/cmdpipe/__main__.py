"""cmdpipe 入口点。

支持: python -m cmdpipe
"""

from .app import main

if __name__ == "__main__":
    main()
