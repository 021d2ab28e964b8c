"""Application entry point for the dog park reservation API."""

from dogpark.config import load_settings, setup_logging
from dogpark.webapp import create_app

settings = load_settings()
setup_logging(settings)

app = create_app(settings)


if __name__ == "__main__":
    app.run(debug=True)
