import sys

from mirrorcrypt.cli import main

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nProgram terminated by user. Partially written files were removed. 👋"); sys.exit(130)
    except Exception as e:
        print(f"\n\nAn unexpected critical error occurred: {e}")
        sys.exit(1)
