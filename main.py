import os

from app.extractor.run import main

if __name__ == "__main__":
    # The hosting environment may provide PORT; default to 8080 for local development.
    port = os.environ.get("PORT", "8080")
    raise SystemExit(main(["--serve", "--port", port]))
