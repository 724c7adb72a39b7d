# /run.py
# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

# Now, import the app factory
from patientshare import create_app

# Create the app instance
app = create_app()

if __name__ == '__main__':
    app.run(host='127.0.0.1', port=5000, debug=app.config.get('DEBUG', False))
