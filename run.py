import os
from dotenv import load_dotenv

# load .env before the config classes read the environment
load_dotenv()

from app import create_app

config_name = os.getenv('FLASK_ENV', 'development')

app = create_app(config_name)

if __name__ == '__main__':
    # NOTE: serves /health, the relay and the scan jobs run on the app's scheduler
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=(config_name == 'development'),
        use_reloader=False
    )
