"""
Crumbled cookie shop API
Storefront, cart and checkout, admin back office and kitchen panel
"""

import logging

import click
from flask import Flask, jsonify
from flask_cors import CORS

from .cache import TTLCache
from .config import config_by_name
from .errors import register_error_handlers
from .models import db

__version__ = '1.0.0'


def create_app(config='development'):
    """Build the application from a config name or class"""
    app = Flask(__name__)
    app.config.from_object(config_by_name[config] if isinstance(config, str) else config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    logging.getLogger('crumbled').setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)
    CORS(app, resources={r'/api/*': {'origins': app.config['CORS_ORIGINS']}}, supports_credentials=True)
    register_error_handlers(app)

    app.extensions['analytics_cache'] = TTLCache(ttl=app.config['ANALYTICS_CACHE_TTL'],
                                                 max_size=app.config['ANALYTICS_CACHE_SIZE'])

    from .account import account_bp
    from .admin_catalog import admin_catalog_bp
    from .admin_customers import admin_customers_bp
    from .admin_delivery import admin_delivery_bp
    from .admin_orders import admin_orders_bp
    from .analytics import analytics_bp
    from .auth import auth_bp
    from .cart import cart_bp
    from .catalog import catalog_bp
    from .checkout import checkout_bp
    from .delivery import delivery_bp
    from .kitchens import kitchens_bp
    from .orders import orders_bp
    from .payments import payments_bp
    from .promo import promo_bp
    from .reviews import reviews_bp

    for blueprint in (auth_bp, account_bp, catalog_bp, cart_bp, delivery_bp, checkout_bp, orders_bp,
                      promo_bp, payments_bp, kitchens_bp, reviews_bp, admin_catalog_bp, admin_customers_bp,
                      admin_delivery_bp, admin_orders_bp, analytics_bp):
        app.register_blueprint(blueprint)

    register_commands(app)

    @app.route('/')
    def home():
        """API index"""
        return jsonify({
            'message': 'Welcome to the Crumbled Cookies API',
            'version': __version__,
            'endpoints': {
                'authentication': {
                    'register': 'POST /api/auth/register',
                    'login': 'POST /api/auth/login',
                    'logout': 'POST /api/auth/logout',
                    'me': 'GET /api/auth/me',
                    'forgot_password': 'POST /api/auth/forgot-password',
                    'reset_password': 'POST /api/auth/reset-password',
                    'admin_login': 'POST /api/auth/admin/login'
                },
                'catalog': {
                    'products': 'GET /api/products',
                    'flavors': 'GET /api/flavors',
                    'locations': 'GET /api/locations'
                },
                'cart': {
                    'view': 'GET /api/cart',
                    'add_item': 'POST /api/cart',
                    'update_item': 'PUT /api/cart/update',
                    'remove_item': 'DELETE /api/cart?item_id=<id>',
                    'clear': 'POST /api/cart/clear',
                    'merge': 'POST /api/cart/merge'
                },
                'checkout': {
                    'start': 'POST /api/checkout/start',
                    'send_otp': 'POST /api/checkout/send-otp',
                    'verify_otp': 'POST /api/checkout/verify-otp',
                    'confirm': 'POST /api/checkout/confirm',
                    'payment': 'POST /api/checkout/payment'
                },
                'orders': {
                    'track': 'GET /api/orders/<id>',
                    'cancel': 'POST /api/orders/<id>/cancel'
                },
                'reviews': {
                    'list': 'GET /api/reviews?flavor_id=<id>',
                    'submit': 'POST /api/reviews'
                },
                'kitchen': {
                    'login': 'POST /api/kitchen/auth/login',
                    'orders': 'GET /api/kitchen/orders'
                },
                'admin': '/api/admin/...'
            }
        }), 200

    return app


def register_commands(app):

    @app.cli.command('init-db')
    @click.option('--admin-password', default='Admin1234', help='Password for the seeded admin user')
    def init_db_command(admin_password):
        """Create tables and add sample data"""
        from .seed import init_db
        if init_db(admin_password):
            click.echo('Sample data created successfully!')
        else:
            click.echo('Database already initialized')

    @app.cli.command('cleanup-carts')
    def cleanup_carts_command():
        """Mark expired carts abandoned"""
        from .cart import cleanup_expired_carts
        stats = cleanup_expired_carts()
        click.echo(f"Expired carts marked abandoned: {stats['expired']}")
        for key in ('total', 'customer_carts', 'guest_carts', 'active', 'abandoned'):
            click.echo(f'  {key}: {stats[key]}')

    @app.cli.command('create-admin')
    @click.argument('username')
    @click.argument('email')
    @click.password_option()
    def create_admin_command(username, email, password):
        """Create a back-office user"""
        from .models import Admin
        from .security import hash_password, validate_password
        errors = validate_password(password)
        if errors:
            raise click.ClickException('; '.join(errors))
        if Admin.query.filter((Admin.username == username) | (Admin.email == email.lower())).first():
            raise click.ClickException('An admin with this username or email already exists')
        db.session.add(Admin(username=username, email=email.lower(), password_hash=hash_password(password)))
        db.session.commit()
        click.echo(f'Admin {username} created')
