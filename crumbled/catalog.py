"""
Storefront catalog reads
"""

from flask import Blueprint, jsonify, request

from .errors import NotFoundError
from .models import Flavor, Product

catalog_bp = Blueprint('catalog', __name__, url_prefix='/api')


def _truthy(value):
    return str(value).strip().lower() in ('1', 'true', 'yes')


# ==================== Routes - Products ====================

@catalog_bp.route('/products', methods=['GET'])
def products():
    """Get all products on sale"""
    query = Product.query.filter(Product.is_active.is_(True), Product.deleted_at.is_(None))

    category = request.args.get('category')
    if category:
        query = query.filter_by(category=category)
    if request.args.get('is_pack') is not None:
        query = query.filter_by(is_pack=_truthy(request.args['is_pack']))

    products_list = query.order_by(Product.display_order, Product.name).all()
    return jsonify([product.to_dict() for product in products_list]), 200


@catalog_bp.route('/products/<int:product_id>', methods=['GET'])
def product_detail(product_id):
    """Get a single product"""
    product = Product.query.get_or_404(product_id)
    if not product.is_available:
        raise NotFoundError('Product not found')
    return jsonify(product.to_dict()), 200


# ==================== Routes - Flavors ====================

@catalog_bp.route('/flavors', methods=['GET'])
def flavors():
    """Get all flavors that can be picked for a pack"""
    query = Flavor.query.filter(Flavor.is_active.is_(True), Flavor.is_enabled.is_(True),
                                Flavor.deleted_at.is_(None))
    category = request.args.get('category')
    if category:
        query = query.filter_by(category=category)

    return jsonify([flavor.to_dict() for flavor in query.order_by(Flavor.name).all()]), 200


@catalog_bp.route('/flavors/<int:flavor_id>', methods=['GET'])
def flavor_detail(flavor_id):
    """Get a single flavor"""
    flavor = Flavor.query.get_or_404(flavor_id)
    if not flavor.is_available:
        raise NotFoundError('Flavor not found')
    return jsonify(flavor.to_dict()), 200
