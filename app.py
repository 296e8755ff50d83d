"""
Crumbled Cookies API
Development entry point; `flask --app app <command>` for the CLI commands
"""

import os

from crumbled import create_app
from crumbled.seed import init_db

app = create_app(os.getenv('FLASK_CONFIG', 'development'))


# ==================== Main ====================

if __name__ == '__main__':
    with app.app_context():
        init_db()
    app.run(debug=app.config.get('DEBUG', False), host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
