from pscontrol import create_app
from pscontrol.config import config

app = create_app()

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT, threaded=True)
