"""
Database models for the cookie shop
"""

from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Order lifecycle
ORDER_PENDING = 'pending'
ORDER_UNPAID = 'unpaid'
ORDER_CONFIRMED = 'confirmed'
ORDER_PREPARING = 'preparing'
ORDER_PACKING = 'packing'
ORDER_READY = 'ready'
ORDER_OUT_FOR_DELIVERY = 'out_for_delivery'
ORDER_DELIVERED = 'delivered'
ORDER_CANCELLED = 'cancelled'
ORDER_FAILED = 'failed'

ORDER_STATUSES = (
    ORDER_PENDING, ORDER_UNPAID, ORDER_CONFIRMED, ORDER_PREPARING, ORDER_PACKING,
    ORDER_READY, ORDER_OUT_FOR_DELIVERY, ORDER_DELIVERED, ORDER_CANCELLED, ORDER_FAILED,
)

# Orders a kitchen is currently working on
OPEN_KITCHEN_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED, ORDER_PREPARING, ORDER_PACKING)

TERMINAL_STATUSES = (ORDER_DELIVERED, ORDER_CANCELLED, ORDER_FAILED)

PAYMENT_PENDING = 'pending'
PAYMENT_UNPAID = 'unpaid'
PAYMENT_PAID = 'paid'
PAYMENT_FAILED = 'failed'
PAYMENT_REFUNDED = 'refunded'

PAYMENT_METHODS = ('cod', 'paymob')

CART_ACTIVE = 'active'
CART_ABANDONED = 'abandoned'
CART_CONVERTED = 'converted'

FLAVOR_SIZES = ('mini', 'medium', 'large')


def _iso(value):
    return value.isoformat() if value else None


# ==================== Accounts ====================

class Admin(db.Model):
    """Back-office user"""
    __tablename__ = 'admins'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Admin {self.username}>'

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'is_active': self.is_active,
            'last_login': _iso(self.last_login),
        }


class Customer(db.Model):
    """Registered or guest customer"""
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False, default='')
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(20), nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    customer_type = db.Column(db.String(20), default='registered', nullable=False)  # registered, guest
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    addresses = db.relationship('CustomerAddress', backref='customer', cascade='all, delete-orphan',
                                order_by='CustomerAddress.is_default.desc(), CustomerAddress.id')

    def __repr__(self):
        return f'<Customer {self.email}>'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    @property
    def is_registered(self):
        return self.customer_type == 'registered'

    def to_dict(self):
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'phone': self.phone,
            'customer_type': self.customer_type,
            'created_at': _iso(self.created_at),
        }


class CustomerAddress(db.Model):
    """Saved delivery address"""
    __tablename__ = 'customer_addresses'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    label = db.Column(db.String(50), nullable=True)
    street_address = db.Column(db.Text, nullable=False)
    additional_info = db.Column(db.Text, nullable=True)
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id'), nullable=False)
    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    city = db.relationship('City')
    zone = db.relationship('Zone')

    def to_dict(self):
        return {
            'id': self.id,
            'label': self.label,
            'street_address': self.street_address,
            'additional_info': self.additional_info,
            'city_id': self.city_id,
            'city_name': self.city.name if self.city else None,
            'zone_id': self.zone_id,
            'zone_name': self.zone.name if self.zone else None,
            'delivery_fee': self.zone.delivery_fee if self.zone else 0,
            'is_default': self.is_default,
        }


# ==================== Delivery ====================

class City(db.Model):
    __tablename__ = 'cities'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    zones = db.relationship('Zone', backref='city', order_by='Zone.name')

    def __repr__(self):
        return f'<City {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'is_active': self.is_active,
            'zone_count': len(self.zones),
        }


class DeliveryTimeSlot(db.Model):
    __tablename__ = 'delivery_time_slots'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    from_hour = db.Column(db.String(5), nullable=False)  # HH:MM
    to_hour = db.Column(db.String(5), nullable=False)
    available_days = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'from_hour': self.from_hour,
            'to_hour': self.to_hour,
            'available_days': self.available_days or [],
            'is_active': self.is_active,
        }


class Zone(db.Model):
    __tablename__ = 'zones'

    id = db.Column(db.Integer, primary_key=True)
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    delivery_days = db.Column(db.Integer, default=0, nullable=False)
    delivery_fee = db.Column(db.Float, default=0, nullable=False)
    time_slot_id = db.Column(db.Integer, db.ForeignKey('delivery_time_slots.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    time_slot = db.relationship('DeliveryTimeSlot', backref='zones')

    def __repr__(self):
        return f'<Zone {self.name}>'

    def to_dict(self):
        slot = self.time_slot
        return {
            'id': self.id,
            'city_id': self.city_id,
            'city_name': self.city.name if self.city else None,
            'name': self.name,
            'delivery_days': self.delivery_days,
            'delivery_fee': self.delivery_fee,
            'time_slot_id': self.time_slot_id,
            'time_slot': slot.to_dict() if slot else None,
            'is_active': self.is_active,
        }


class DeliveryMan(db.Model):
    __tablename__ = 'delivery_men'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    id_number = db.Column(db.String(50), unique=True, nullable=False)
    home_address = db.Column(db.Text, nullable=False)
    mobile_phone = db.Column(db.String(20), nullable=False)
    available_from_hour = db.Column(db.String(5), nullable=False)
    available_to_hour = db.Column(db.String(5), nullable=False)
    available_days = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'id_number': self.id_number,
            'home_address': self.home_address,
            'mobile_phone': self.mobile_phone,
            'available_from_hour': self.available_from_hour,
            'available_to_hour': self.available_to_hour,
            'available_days': self.available_days or [],
            'notes': self.notes,
            'is_active': self.is_active,
        }


# ==================== Kitchens ====================

class Kitchen(db.Model):
    """Fulfillment location"""
    __tablename__ = 'kitchens'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    address = db.Column(db.Text, nullable=True)
    contact_phone = db.Column(db.String(20), nullable=True)
    contact_email = db.Column(db.String(120), nullable=True)
    capacity = db.Column(db.Integer, default=20, nullable=False)  # concurrent open orders
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    zone_links = db.relationship('KitchenZone', backref='kitchen', cascade='all, delete-orphan')
    users = db.relationship('KitchenUser', backref='kitchen', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Kitchen {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'address': self.address,
            'contact_phone': self.contact_phone,
            'contact_email': self.contact_email,
            'capacity': self.capacity,
            'is_active': self.is_active,
            'zones': [link.to_dict() for link in self.zone_links if link.is_active],
        }


class KitchenZone(db.Model):
    """Which kitchens serve which zone"""
    __tablename__ = 'kitchen_zones'
    __table_args__ = (db.UniqueConstraint('kitchen_id', 'zone_id', name='uq_kitchen_zone'),)

    id = db.Column(db.Integer, primary_key=True)
    kitchen_id = db.Column(db.Integer, db.ForeignKey('kitchens.id'), nullable=False)
    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), nullable=False)
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    priority = db.Column(db.Integer, default=1, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    zone = db.relationship('Zone')

    def to_dict(self):
        return {
            'kitchen_id': self.kitchen_id,
            'kitchen_name': self.kitchen.name if self.kitchen else None,
            'zone_id': self.zone_id,
            'zone_name': self.zone.name if self.zone else None,
            'is_primary': self.is_primary,
            'priority': self.priority,
            'is_active': self.is_active,
        }


class KitchenUser(db.Model):
    """Kitchen panel login"""
    __tablename__ = 'kitchen_users'

    id = db.Column(db.Integer, primary_key=True)
    kitchen_id = db.Column(db.Integer, db.ForeignKey('kitchens.id'), nullable=False)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default='staff', nullable=False)  # staff, manager
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'kitchen_id': self.kitchen_id,
            'username': self.username,
            'role': self.role,
            'is_active': self.is_active,
        }


# ==================== Catalog ====================

class Flavor(db.Model):
    """Cookie flavor sold in three sizes"""
    __tablename__ = 'flavors'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(50), nullable=True)
    image_url = db.Column(db.String(255), nullable=True)
    mini_price = db.Column(db.Float, nullable=False, default=0)
    medium_price = db.Column(db.Float, nullable=False, default=0)
    large_price = db.Column(db.Float, nullable=False, default=0)
    stock_quantity_mini = db.Column(db.Integer, default=0, nullable=False)
    stock_quantity_medium = db.Column(db.Integer, default=0, nullable=False)
    stock_quantity_large = db.Column(db.Integer, default=0, nullable=False)
    # Rating statistics over approved reviews, refreshed on every review change
    total_reviews = db.Column(db.Integer, default=0, nullable=False)
    average_rating = db.Column(db.Float, default=0, nullable=False)
    rating_counts = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Flavor {self.name}>'

    @property
    def is_available(self):
        return self.is_active and self.is_enabled and self.deleted_at is None

    def price_for(self, size):
        return getattr(self, f'{size.lower()}_price') or 0

    def stock_for(self, size):
        return getattr(self, f'stock_quantity_{size.lower()}') or 0

    def set_stock(self, size, quantity):
        setattr(self, f'stock_quantity_{size.lower()}', quantity)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'image_url': self.image_url,
            'mini_price': self.mini_price,
            'medium_price': self.medium_price,
            'large_price': self.large_price,
            'stock': {size: self.stock_for(size) for size in FLAVOR_SIZES},
            'rating': {
                'average': self.average_rating or 0,
                'total_reviews': self.total_reviews or 0,
                'counts': self.rating_counts or {str(star): 0 for star in range(1, 6)},
            },
            'is_active': self.is_active,
            'is_enabled': self.is_enabled,
            'deleted_at': _iso(self.deleted_at),
        }


class Product(db.Model):
    """Single cookie product or a pack of N flavors"""
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(50), nullable=True)
    is_pack = db.Column(db.Boolean, default=False, nullable=False)
    count = db.Column(db.Integer, nullable=True)  # cookies per pack
    flavor_size = db.Column(db.String(10), default='Medium', nullable=False)
    base_price = db.Column(db.Float, nullable=False)
    image_url = db.Column(db.String(255), nullable=True)
    stock_quantity = db.Column(db.Integer, default=0, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Product {self.name}>'

    @property
    def is_available(self):
        return self.is_active and self.deleted_at is None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'is_pack': self.is_pack,
            'count': self.count,
            'flavor_size': self.flavor_size,
            'base_price': self.base_price,
            'image_url': self.image_url,
            'stock_quantity': self.stock_quantity,
            'display_order': self.display_order,
            'is_active': self.is_active,
            'deleted_at': _iso(self.deleted_at),
        }


class StockHistory(db.Model):
    """Audit row for every manual stock change"""
    __tablename__ = 'stock_history'

    id = db.Column(db.Integer, primary_key=True)
    item_type = db.Column(db.String(20), nullable=False)  # flavor, product
    item_id = db.Column(db.Integer, nullable=False, index=True)
    size = db.Column(db.String(10), nullable=True)
    old_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)
    change_amount = db.Column(db.Integer, nullable=False)
    change_type = db.Column(db.String(20), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    changed_by = db.Column(db.String(80), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'item_type': self.item_type,
            'item_id': self.item_id,
            'size': self.size,
            'old_quantity': self.old_quantity,
            'new_quantity': self.new_quantity,
            'change_amount': self.change_amount,
            'change_type': self.change_type,
            'notes': self.notes,
            'changed_by': self.changed_by,
            'created_at': _iso(self.created_at),
        }


# ==================== Cart ====================

class Cart(db.Model):
    __tablename__ = 'carts'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), unique=True, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True)
    status = db.Column(db.String(20), default=CART_ACTIVE, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    items = db.relationship('CartItem', backref='cart', cascade='all, delete-orphan', order_by='CartItem.id')

    def __repr__(self):
        return f'<Cart {self.session_id}>'


class CartItem(db.Model):
    __tablename__ = 'cart_items'

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey('carts.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    is_pack = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    product = db.relationship('Product')
    flavors = db.relationship('CartItemFlavor', backref='cart_item', cascade='all, delete-orphan')


class CartItemFlavor(db.Model):
    __tablename__ = 'cart_item_flavors'

    id = db.Column(db.Integer, primary_key=True)
    cart_item_id = db.Column(db.Integer, db.ForeignKey('cart_items.id'), nullable=False)
    flavor_id = db.Column(db.Integer, db.ForeignKey('flavors.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    size = db.Column(db.String(10), nullable=False, default='Medium')

    flavor = db.relationship('Flavor')


# ==================== Promotions ====================

class PromoCode(db.Model):
    __tablename__ = 'promo_codes'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    discount_type = db.Column(db.String(20), default='percentage', nullable=False)  # percentage, fixed_amount
    enhanced_type = db.Column(db.String(30), default='basic', nullable=False)
    discount_value = db.Column(db.Float, nullable=False, default=0)
    minimum_order_amount = db.Column(db.Float, default=0, nullable=False)
    maximum_discount = db.Column(db.Float, nullable=True)
    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, default=0, nullable=False)
    max_usage_per_user = db.Column(db.Integer, nullable=True)
    valid_from = db.Column(db.DateTime, nullable=True)
    valid_until = db.Column(db.DateTime, nullable=True)
    category_restrictions = db.Column(db.JSON, nullable=True)
    buy_x_quantity = db.Column(db.Integer, nullable=True)
    get_y_quantity = db.Column(db.Integer, nullable=True)
    get_y_discount_percentage = db.Column(db.Float, default=100, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<PromoCode {self.code}>'

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'description': self.description,
            'discount_type': self.discount_type,
            'enhanced_type': self.enhanced_type,
            'discount_value': self.discount_value,
            'minimum_order_amount': self.minimum_order_amount,
            'maximum_discount': self.maximum_discount,
            'usage_limit': self.usage_limit,
            'used_count': self.used_count,
            'max_usage_per_user': self.max_usage_per_user,
            'valid_from': _iso(self.valid_from),
            'valid_until': _iso(self.valid_until),
            'category_restrictions': self.category_restrictions or [],
            'buy_x_quantity': self.buy_x_quantity,
            'get_y_quantity': self.get_y_quantity,
            'get_y_discount_percentage': self.get_y_discount_percentage,
            'is_active': self.is_active,
        }


class PromoCodeUsage(db.Model):
    __tablename__ = 'promo_code_usages'

    id = db.Column(db.Integer, primary_key=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_codes.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True)
    customer_email = db.Column(db.String(120), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True)
    discount_amount = db.Column(db.Float, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    customer = db.relationship('Customer')
    order = db.relationship('Order')


# ==================== Orders ====================

class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True)
    customer_name = db.Column(db.String(160), nullable=False)
    customer_email = db.Column(db.String(120), nullable=True, index=True)
    customer_phone = db.Column(db.String(20), nullable=False, index=True)
    is_guest = db.Column(db.Boolean, default=False, nullable=False)
    delivery_address = db.Column(db.Text, nullable=False)
    delivery_additional_info = db.Column(db.Text, nullable=True)
    delivery_city = db.Column(db.String(100), nullable=True)
    delivery_zone = db.Column(db.String(100), nullable=True)
    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    subtotal = db.Column(db.Float, nullable=False)
    delivery_fee = db.Column(db.Float, default=0, nullable=False)
    discount_amount = db.Column(db.Float, default=0, nullable=False)
    total = db.Column(db.Float, nullable=False)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_codes.id'), nullable=True)
    status = db.Column(db.String(20), default=ORDER_PENDING, nullable=False, index=True)
    payment_status = db.Column(db.String(20), default=PAYMENT_PENDING, nullable=False)
    payment_method = db.Column(db.String(20), default='cod', nullable=False)
    paymob_order_id = db.Column(db.String(50), nullable=True, index=True)
    paymob_transaction_id = db.Column(db.String(50), nullable=True)
    payment_token = db.Column(db.Text, nullable=True)
    kitchen_id = db.Column(db.Integer, db.ForeignKey('kitchens.id'), nullable=True)
    delivery_man_id = db.Column(db.Integer, db.ForeignKey('delivery_men.id'), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship('OrderItem', backref='order', cascade='all, delete-orphan', order_by='OrderItem.id')
    customer = db.relationship('Customer', backref='orders')
    kitchen = db.relationship('Kitchen', backref='orders')
    delivery_man = db.relationship('DeliveryMan', backref='orders')
    zone = db.relationship('Zone')
    promo_code = db.relationship('PromoCode')
    history = db.relationship('OrderStatusHistory', backref='order', cascade='all, delete-orphan',
                              order_by='OrderStatusHistory.id')

    def __repr__(self):
        return f'<Order {self.id}>'

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'customer_phone': self.customer_phone,
            'is_guest': self.is_guest,
            'delivery_address': self.delivery_address,
            'delivery_additional_info': self.delivery_additional_info,
            'delivery_city': self.delivery_city,
            'delivery_zone': self.delivery_zone,
            'zone_id': self.zone_id,
            'delivery_date': _iso(self.delivery_date),
            'subtotal': self.subtotal,
            'delivery_fee': self.delivery_fee,
            'discount_amount': self.discount_amount,
            'total': self.total,
            'promo_code': self.promo_code.code if self.promo_code else None,
            'status': self.status,
            'payment_status': self.payment_status,
            'payment_method': self.payment_method,
            'kitchen_id': self.kitchen_id,
            'delivery_man_id': self.delivery_man_id,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    product_name = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    total_price = db.Column(db.Float, nullable=False)

    product = db.relationship('Product', backref='order_items')
    flavors = db.relationship('OrderItemFlavor', backref='order_item', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<OrderItem {self.id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_price': self.total_price,
            'flavors': [f.to_dict() for f in self.flavors],
        }


class OrderItemFlavor(db.Model):
    __tablename__ = 'order_item_flavors'

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey('order_items.id'), nullable=False)
    flavor_id = db.Column(db.Integer, db.ForeignKey('flavors.id'), nullable=False)
    flavor_name = db.Column(db.String(100), nullable=False)
    size = db.Column(db.String(10), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False, default=0)

    flavor = db.relationship('Flavor')

    def to_dict(self):
        return {
            'flavor_id': self.flavor_id,
            'flavor_name': self.flavor_name,
            'size': self.size,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
        }


class OrderStatusHistory(db.Model):
    __tablename__ = 'order_status_history'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.String(80), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'from_status': self.from_status,
            'to_status': self.to_status,
            'changed_by': self.changed_by,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
        }


# ==================== Reviews ====================

class CustomerReview(db.Model):
    """Star rating of a flavor or product by a registered customer"""
    __tablename__ = 'customer_reviews'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=True)
    flavor_id = db.Column(db.Integer, db.ForeignKey('flavors.id'), nullable=True, index=True)
    rating = db.Column(db.Integer, nullable=False)  # 1 to 5
    title = db.Column(db.String(200), nullable=True)
    review_text = db.Column(db.Text, nullable=True)
    is_anonymous = db.Column(db.Boolean, default=False, nullable=False)
    is_verified_purchase = db.Column(db.Boolean, default=False, nullable=False)
    is_approved = db.Column(db.Boolean, default=True, nullable=False)
    is_featured = db.Column(db.Boolean, default=False, nullable=False)
    admin_response = db.Column(db.Text, nullable=True)
    admin_response_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = db.relationship('Customer')
    product = db.relationship('Product')
    flavor = db.relationship('Flavor')

    def __repr__(self):
        return f'<CustomerReview {self.id} {self.rating}>'

    def to_dict(self):
        return {
            'id': self.id,
            'customer': {
                'id': self.customer_id,
                'name': 'Anonymous' if self.is_anonymous else self.customer.full_name,
            },
            'order_id': self.order_id,
            'product': {'id': self.product_id, 'name': self.product.name} if self.product else None,
            'flavor': {'id': self.flavor_id, 'name': self.flavor.name} if self.flavor else None,
            'rating': self.rating,
            'title': self.title,
            'review': self.review_text,
            'is_anonymous': self.is_anonymous,
            'is_verified_purchase': self.is_verified_purchase,
            'is_approved': self.is_approved,
            'is_featured': self.is_featured,
            'admin_response': self.admin_response,
            'admin_response_date': _iso(self.admin_response_date),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


# ==================== Verification & Messaging ====================

class PhoneVerification(db.Model):
    __tablename__ = 'phone_verifications'

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(20), nullable=False, index=True)
    code = db.Column(db.String(6), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class PasswordResetToken(db.Model):
    """One-time password reset link; only the SHA-256 of the token is stored"""
    __tablename__ = 'password_reset_tokens'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    customer = db.relationship('Customer')


class SmsLog(db.Model):
    __tablename__ = 'sms_logs'

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(20), nullable=False)
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False)  # sent, failed, dry_run
    error_message = db.Column(db.Text, nullable=True)
    response_data = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'phone': self.phone,
            'message': self.message,
            'status': self.status,
            'error_message': self.error_message,
            'created_at': _iso(self.created_at),
        }


class SiteSetting(db.Model):
    """Key/value store for business settings editable from the admin panel"""
    __tablename__ = 'site_settings'

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
