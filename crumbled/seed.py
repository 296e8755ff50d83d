"""
Database initialization with sample data
"""

import logging

from .models import (
    db, Admin, City, DeliveryTimeSlot, Flavor, Kitchen, KitchenUser, KitchenZone, Product, Zone,
)
from .security import hash_password

logger = logging.getLogger(__name__)

WORKING_DAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Saturday', 'Sunday']


def init_db(admin_password='Admin1234'):
    """Create tables and add sample data when the catalog is empty"""
    db.create_all()

    if Product.query.first() is not None:
        return False

    slot = DeliveryTimeSlot(name='Daytime', from_hour='10:00', to_hour='18:00', available_days=WORKING_DAYS)
    cairo = City(name='Cairo')
    giza = City(name='Giza')
    zones = [
        Zone(city=cairo, name='Nasr City', delivery_days=1, delivery_fee=40, time_slot=slot),
        Zone(city=cairo, name='Maadi', delivery_days=1, delivery_fee=45, time_slot=slot),
        Zone(city=giza, name='Sheikh Zayed', delivery_days=2, delivery_fee=60, time_slot=slot),
    ]
    db.session.add_all([slot, cairo, giza] + zones)

    kitchen = Kitchen(name='Main Kitchen', address='Nasr City, Cairo', capacity=30)
    for priority, zone in enumerate(zones, start=1):
        kitchen.zone_links.append(KitchenZone(zone=zone, is_primary=True, priority=priority))
    kitchen.users.append(KitchenUser(username='kitchen', password_hash=hash_password('Kitchen1234'),
                                     role='manager'))
    db.session.add(kitchen)

    sample_flavors = [
        Flavor(name='Classic Chocolate Chip', category='classic', mini_price=0, medium_price=0, large_price=15,
               stock_quantity_mini=200, stock_quantity_medium=200, stock_quantity_large=100),
        Flavor(name='Double Chocolate', category='chocolate', mini_price=0, medium_price=5, large_price=20,
               stock_quantity_mini=150, stock_quantity_medium=150, stock_quantity_large=80),
        Flavor(name='Red Velvet', category='specialty', mini_price=0, medium_price=10, large_price=25,
               stock_quantity_mini=100, stock_quantity_medium=100, stock_quantity_large=60),
        Flavor(name='Lotus Biscoff', category='specialty', mini_price=0, medium_price=10, large_price=25,
               stock_quantity_mini=100, stock_quantity_medium=100, stock_quantity_large=60),
    ]
    sample_products = [
        Product(name='Single Cookie', description='One freshly baked cookie',
                category='cookies', base_price=45, stock_quantity=200, display_order=1),
        Product(name='Box of 4', description='Pick any four flavors', category='packs',
                is_pack=True, count=4, flavor_size='Medium', base_price=160, stock_quantity=50, display_order=2),
        Product(name='Box of 6', description='Pick any six flavors', category='packs',
                is_pack=True, count=6, flavor_size='Medium', base_price=230, stock_quantity=50, display_order=3),
        Product(name='Mini Box of 12', description='Twelve mini cookies', category='packs',
                is_pack=True, count=12, flavor_size='Mini', base_price=200, stock_quantity=30, display_order=4),
    ]
    db.session.add_all(sample_flavors + sample_products)

    if Admin.query.first() is None:
        db.session.add(Admin(username='admin', email='admin@crumbled.local',
                             password_hash=hash_password(admin_password)))

    db.session.commit()
    logger.info('Sample data created')
    return True
