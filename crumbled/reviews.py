"""
Customer reviews and flavor rating statistics
"""

import logging
from datetime import datetime

from flask import Blueprint, g, jsonify, request

from .errors import NotFoundError, ValidationError, as_int, require_fields
from .models import db, CustomerReview, Flavor, Order, Product, ORDER_DELIVERED
from .security import admin_required, customer_required

logger = logging.getLogger(__name__)

reviews_bp = Blueprint('reviews', __name__, url_prefix='/api')


def refresh_flavor_rating(flavor_id):
    """Recompute a flavor's review count, average and star counts from approved reviews"""
    if flavor_id is None:
        return
    flavor = db.session.get(Flavor, flavor_id)
    if flavor is None:
        return
    db.session.flush()
    ratings = [r.rating for r in CustomerReview.query.filter_by(flavor_id=flavor_id, is_approved=True).all()]
    flavor.total_reviews = len(ratings)
    flavor.average_rating = round(sum(ratings) / len(ratings), 2) if ratings else 0
    flavor.rating_counts = {str(star): ratings.count(star) for star in range(1, 6)}


def _page_args(default_limit):
    page = as_int(request.args.get('page', 1), 'page', minimum=1)
    limit = min(as_int(request.args.get('limit', default_limit), 'limit', minimum=1), 100)
    return page, limit


# ==================== Routes - Reviews ====================

@reviews_bp.route('/reviews', methods=['GET'])
def reviews():
    """Approved reviews, newest first"""
    query = CustomerReview.query.filter_by(is_approved=True)
    if request.args.get('flavor_id'):
        query = query.filter_by(flavor_id=as_int(request.args['flavor_id'], 'flavor_id'))
    if request.args.get('product_id'):
        query = query.filter_by(product_id=as_int(request.args['product_id'], 'product_id'))

    page, limit = _page_args(10)
    total = query.count()
    rows = (query.order_by(CustomerReview.created_at.desc(), CustomerReview.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all())

    return jsonify({
        'reviews': [review.to_dict() for review in rows],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    }), 200


@reviews_bp.route('/reviews', methods=['POST'])
@customer_required
def submit_review():
    """Rate a flavor or product"""
    data = request.get_json(silent=True)
    require_fields(data, ['rating'])

    rating = as_int(data['rating'], 'rating')
    if not 1 <= rating <= 5:
        raise ValidationError('Rating must be between 1 and 5')

    flavor_id = as_int(data['flavor_id'], 'flavor_id') if data.get('flavor_id') else None
    product_id = as_int(data['product_id'], 'product_id') if data.get('product_id') else None
    if flavor_id is None and product_id is None:
        raise ValidationError('flavor_id or product_id is required')
    if flavor_id is not None and db.session.get(Flavor, flavor_id) is None:
        raise NotFoundError('Flavor not found')
    if product_id is not None and db.session.get(Product, product_id) is None:
        raise NotFoundError('Product not found')

    order = None
    if data.get('order_id'):
        order = db.session.get(Order, as_int(data['order_id'], 'order_id'))
        if order is None or order.customer_id != g.customer.id:
            raise NotFoundError('Order not found')

    # One review per customer and flavor (or product); a resubmission edits it
    query = CustomerReview.query.filter_by(customer_id=g.customer.id)
    if flavor_id is not None:
        query = query.filter_by(flavor_id=flavor_id)
    else:
        query = query.filter_by(product_id=product_id, flavor_id=None)
    review = query.first()
    created = review is None
    if created:
        review = CustomerReview(customer_id=g.customer.id, flavor_id=flavor_id)
        db.session.add(review)

    review.product_id = product_id
    review.rating = rating
    review.title = data.get('title')
    review.review_text = data.get('review')
    review.is_anonymous = bool(data.get('is_anonymous'))
    if order is not None:
        review.order_id = order.id
        review.is_verified_purchase = order.status == ORDER_DELIVERED

    refresh_flavor_rating(flavor_id)
    db.session.commit()
    logger.info('Customer %s %s review %s', g.customer.id, 'submitted' if created else 'updated', review.id)

    return jsonify({
        'message': 'Review submitted successfully' if created else 'Review updated successfully',
        'review': review.to_dict(),
    }), 201 if created else 200


# ==================== Routes - Admin Reviews ====================

@reviews_bp.route('/admin/reviews', methods=['GET'])
@admin_required
def admin_reviews():
    """Every review, optionally filtered by approval"""
    query = CustomerReview.query
    if request.args.get('approved') in ('0', '1'):
        query = query.filter_by(is_approved=request.args['approved'] == '1')
    if request.args.get('flavor_id'):
        query = query.filter_by(flavor_id=as_int(request.args['flavor_id'], 'flavor_id'))

    page, limit = _page_args(20)
    total = query.count()
    rows = (query.order_by(CustomerReview.created_at.desc(), CustomerReview.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all())

    return jsonify({
        'reviews': [review.to_dict() for review in rows],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    }), 200


@reviews_bp.route('/admin/reviews/<int:review_id>', methods=['PATCH', 'DELETE'])
@admin_required
def admin_review_detail(review_id):
    """Moderate or delete a review"""
    review = CustomerReview.query.get_or_404(review_id)
    flavor_id = review.flavor_id

    if request.method == 'DELETE':
        db.session.delete(review)
        refresh_flavor_rating(flavor_id)
        db.session.commit()
        logger.info('Review %s deleted by %s', review_id, g.admin.username)
        return jsonify({'message': 'Review deleted successfully'}), 200

    data = request.get_json(silent=True) or {}
    if 'is_approved' in data:
        review.is_approved = bool(data['is_approved'])
    if 'is_featured' in data:
        review.is_featured = bool(data['is_featured'])
    if 'admin_response' in data:
        review.admin_response = data['admin_response'] or None
        review.admin_response_date = datetime.utcnow() if review.admin_response else None

    refresh_flavor_rating(flavor_id)
    db.session.commit()

    return jsonify({
        'message': 'Review updated successfully',
        'review': review.to_dict(),
    }), 200
