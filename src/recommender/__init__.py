"""ScholarHub recommendation and content-similarity engine."""

from dotenv import load_dotenv

# Load .env before config.Settings or security.get_api_key read os.environ.
load_dotenv()
