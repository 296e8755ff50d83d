"""
Admin product and flavor management, including stock adjustments
"""

import logging
from datetime import datetime

from flask import Blueprint, g, jsonify, request

from .cart import normalize_size
from .errors import ValidationError, as_float, as_int, require_fields
from .models import db, Flavor, Product, StockHistory
from .security import admin_required

logger = logging.getLogger(__name__)

admin_catalog_bp = Blueprint('admin_catalog', __name__, url_prefix='/api/admin')

CHANGE_TYPES = ('addition', 'subtraction', 'replacement')


# ==================== Helper Functions ====================

def apply_stock_change(current, quantity, change_type):
    """New stock level after an addition, subtraction (floored at 0) or replacement"""
    if change_type == 'addition':
        return current + quantity
    if change_type == 'subtraction':
        return max(current - quantity, 0)
    if change_type == 'replacement':
        return quantity
    raise ValidationError(f'change_type must be one of: {", ".join(CHANGE_TYPES)}')


def _stock_request():
    data = request.get_json(silent=True)
    require_fields(data, ['quantity'])
    quantity = as_int(data['quantity'], 'quantity', minimum=0)
    change_type = data.get('change_type', 'replacement')
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f'change_type must be one of: {", ".join(CHANGE_TYPES)}')
    return data, quantity, change_type


def _record_stock(item_type, item_id, size, old, new, change_type, notes):
    db.session.add(StockHistory(
        item_type=item_type,
        item_id=item_id,
        size=size,
        old_quantity=old,
        new_quantity=new,
        change_amount=new - old,
        change_type=change_type,
        notes=notes,
        changed_by=g.admin.username,
    ))


def _include_deleted():
    return request.args.get('include_deleted') in ('1', 'true')


def _apply_product_fields(product, data):
    if 'name' in data:
        if not str(data['name'] or '').strip():
            raise ValidationError('name cannot be empty')
        product.name = data['name'].strip()
    for field in ('description', 'category', 'image_url'):
        if field in data:
            setattr(product, field, data[field])
    if 'base_price' in data:
        product.base_price = as_float(data['base_price'], 'base_price', minimum=0)
    if 'is_pack' in data:
        product.is_pack = bool(data['is_pack'])
    if 'count' in data:
        product.count = as_int(data['count'], 'count', minimum=1) if data['count'] not in (None, '') else None
    if 'flavor_size' in data:
        product.flavor_size = normalize_size(data['flavor_size'])
    if 'stock_quantity' in data:
        product.stock_quantity = as_int(data['stock_quantity'], 'stock_quantity', minimum=0)
    if 'display_order' in data:
        product.display_order = as_int(data['display_order'], 'display_order')
    if 'is_active' in data:
        product.is_active = bool(data['is_active'])
    if product.is_pack and not product.count:
        raise ValidationError('Packs need a cookie count')


def _apply_flavor_fields(flavor, data):
    if 'name' in data:
        if not str(data['name'] or '').strip():
            raise ValidationError('name cannot be empty')
        flavor.name = data['name'].strip()
    for field in ('description', 'category', 'image_url'):
        if field in data:
            setattr(flavor, field, data[field])
    for field in ('mini_price', 'medium_price', 'large_price'):
        if field in data:
            setattr(flavor, field, as_float(data[field], field, minimum=0))
    for size in ('mini', 'medium', 'large'):
        field = f'stock_quantity_{size}'
        if field in data:
            setattr(flavor, field, as_int(data[field], field, minimum=0))
    for field in ('is_active', 'is_enabled'):
        if field in data:
            setattr(flavor, field, bool(data[field]))


# ==================== Routes - Admin Products ====================

@admin_catalog_bp.route('/products', methods=['GET', 'POST'])
@admin_required
def products():
    """Get all products or create new product"""
    if request.method == 'GET':
        query = Product.query
        if not _include_deleted():
            query = query.filter(Product.deleted_at.is_(None))
        products_list = query.order_by(Product.display_order, Product.name).all()
        return jsonify([product.to_dict() for product in products_list]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['name', 'base_price'])

    product = Product()
    _apply_product_fields(product, data)
    db.session.add(product)
    db.session.commit()
    logger.info('Product %s created by %s', product.id, g.admin.username)

    return jsonify({
        'message': 'Product created successfully',
        'product': product.to_dict()
    }), 201


@admin_catalog_bp.route('/products/<int:product_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def product_detail(product_id):
    """Get, update, or delete a product"""
    product = Product.query.get_or_404(product_id)

    if request.method == 'GET':
        return jsonify(product.to_dict()), 200

    elif request.method == 'PUT':
        _apply_product_fields(product, request.get_json(silent=True) or {})
        product.updated_at = datetime.utcnow()
        db.session.commit()

        return jsonify({
            'message': 'Product updated successfully',
            'product': product.to_dict()
        }), 200

    elif request.method == 'DELETE':
        product.deleted_at = datetime.utcnow()
        product.is_active = False
        db.session.commit()

        return jsonify({'message': 'Product deleted successfully'}), 200


@admin_catalog_bp.route('/products/<int:product_id>/restore', methods=['POST'])
@admin_required
def restore_product(product_id):
    """Undo a soft delete"""
    product = Product.query.get_or_404(product_id)
    if product.deleted_at is None:
        raise ValidationError('Product is not deleted')
    product.deleted_at = None
    product.is_active = True
    db.session.commit()

    return jsonify({
        'message': 'Product restored successfully',
        'product': product.to_dict()
    }), 200


@admin_catalog_bp.route('/products/<int:product_id>/stock', methods=['PUT'])
@admin_required
def product_stock(product_id):
    """Adjust a product's stock"""
    product = Product.query.get_or_404(product_id)
    data, quantity, change_type = _stock_request()

    old = product.stock_quantity
    product.stock_quantity = apply_stock_change(old, quantity, change_type)
    _record_stock('product', product.id, None, old, product.stock_quantity, change_type, data.get('notes'))
    db.session.commit()

    return jsonify({
        'message': 'Stock updated successfully',
        'product': product.to_dict(),
        'old_quantity': old,
        'new_quantity': product.stock_quantity,
    }), 200


# ==================== Routes - Admin Flavors ====================

@admin_catalog_bp.route('/flavors', methods=['GET', 'POST'])
@admin_required
def flavors():
    """Get all flavors or create new flavor"""
    if request.method == 'GET':
        query = Flavor.query
        if not _include_deleted():
            query = query.filter(Flavor.deleted_at.is_(None))
        return jsonify([flavor.to_dict() for flavor in query.order_by(Flavor.name).all()]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['name', 'mini_price', 'medium_price', 'large_price'])

    flavor = Flavor()
    _apply_flavor_fields(flavor, data)
    db.session.add(flavor)
    db.session.commit()

    return jsonify({
        'message': 'Flavor created successfully',
        'flavor': flavor.to_dict()
    }), 201


@admin_catalog_bp.route('/flavors/<int:flavor_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def flavor_detail(flavor_id):
    """Get, update, or delete a flavor"""
    flavor = Flavor.query.get_or_404(flavor_id)

    if request.method == 'GET':
        return jsonify(flavor.to_dict()), 200

    elif request.method == 'PUT':
        _apply_flavor_fields(flavor, request.get_json(silent=True) or {})
        db.session.commit()

        return jsonify({
            'message': 'Flavor updated successfully',
            'flavor': flavor.to_dict()
        }), 200

    elif request.method == 'DELETE':
        flavor.deleted_at = datetime.utcnow()
        flavor.is_active = False
        db.session.commit()

        return jsonify({'message': 'Flavor deleted successfully'}), 200


@admin_catalog_bp.route('/flavors/<int:flavor_id>/restore', methods=['POST'])
@admin_required
def restore_flavor(flavor_id):
    """Undo a soft delete"""
    flavor = Flavor.query.get_or_404(flavor_id)
    if flavor.deleted_at is None:
        raise ValidationError('Flavor is not deleted')
    flavor.deleted_at = None
    flavor.is_active = True
    db.session.commit()

    return jsonify({
        'message': 'Flavor restored successfully',
        'flavor': flavor.to_dict()
    }), 200


@admin_catalog_bp.route('/flavors/<int:flavor_id>/toggle', methods=['PATCH'])
@admin_required
def toggle_flavor(flavor_id):
    """Enable or disable a flavor for pack selection"""
    flavor = Flavor.query.get_or_404(flavor_id)
    flavor.is_enabled = not flavor.is_enabled
    db.session.commit()

    return jsonify({
        'message': f'Flavor {"enabled" if flavor.is_enabled else "disabled"}',
        'flavor': flavor.to_dict()
    }), 200


@admin_catalog_bp.route('/flavors/<int:flavor_id>/stock', methods=['PUT'])
@admin_required
def flavor_stock(flavor_id):
    """Adjust the stock of one flavor size"""
    flavor = Flavor.query.get_or_404(flavor_id)
    data, quantity, change_type = _stock_request()
    require_fields(data, ['size'])
    size = normalize_size(data['size']).lower()

    old = flavor.stock_for(size)
    new = apply_stock_change(old, quantity, change_type)
    flavor.set_stock(size, new)
    _record_stock('flavor', flavor.id, size, old, new, change_type, data.get('notes'))
    db.session.commit()

    return jsonify({
        'message': 'Stock updated successfully',
        'flavor': flavor.to_dict(),
        'size': size,
        'old_quantity': old,
        'new_quantity': new,
    }), 200


@admin_catalog_bp.route('/stock-history', methods=['GET'])
@admin_required
def stock_history():
    """Audit trail of manual stock changes"""
    query = StockHistory.query
    if request.args.get('item_type'):
        query = query.filter_by(item_type=request.args['item_type'])
    if request.args.get('item_id'):
        query = query.filter_by(item_id=as_int(request.args['item_id'], 'item_id'))
    limit = min(as_int(request.args.get('limit', 100), 'limit', minimum=1), 500)

    rows = query.order_by(StockHistory.created_at.desc(), StockHistory.id.desc()).limit(limit).all()
    return jsonify([row.to_dict() for row in rows]), 200
