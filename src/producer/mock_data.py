"""
Mock Order Generator

Generates realistic orders for load-testing the ingestion pipeline.

DATA GENERATION STRATEGY:
1. Fixed pool of customers (delivery contacts), generated once
2. Fixed catalogue of products with integer prices (minor units)
3. Each order picks one customer and 0-5 catalogue lines
4. A small share of generated orders reuse an earlier order_uid, so the
   stream also exercises "last write wins" upserts

LIBRARIES USED:
- Faker: names, phones, addresses, emails
- random.Random: seeded, per-generator randomness (same seed = same orders)
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from faker import Faker

from src.shared.models import Delivery, Item, Order, Payment

RANDOM_SEED = 42

NUM_CUSTOMERS = 100

MAX_ITEMS_PER_ORDER = 5

# Share of orders that re-publish an already generated order_uid
REPUBLISH_RATIO = 0.05

ORDER_UID_LENGTH = 19

CURRENCIES = ["RUB", "USD", "EUR"]
PROVIDERS = ["wbpay", "stripe", "paypal"]
BANKS = ["alpha", "sber", "tinkoff", "vtb"]
DELIVERY_SERVICES = ["meest", "cdek", "dhl", "pickpoint"]
LOCALES = ["en", "ru"]

# (name, brand, price in minor units)
CATALOGUE = [
    ("Mascaras", "Vivienne Sabo", 45300),
    ("Running Shoes", "Asics", 899000),
    ("Cotton T-Shirt", "Uniqlo", 129000),
    ("Denim Jacket", "Levi's", 549000),
    ("Wireless Earbuds", "Xiaomi", 299000),
    ("Phone Case", "Spigen", 99000),
    ("Backpack", "Herschel", 459000),
    ("Water Bottle", "Stanley", 249000),
    ("Desk Lamp", "IKEA", 179000),
    ("Notebook", "Moleskine", 89000),
    ("Sunglasses", "Ray-Ban", 1190000),
    ("Face Cream", "La Roche-Posay", 159000),
    ("Yoga Mat", "Decathlon", 199000),
    ("Coffee Beans", "Lavazza", 69000),
    ("Board Game", "Hasbro", 329000),
]

SIZES = ["0", "XS", "S", "M", "L", "XL"]


class MockDataGenerator:
    """
    Generates reproducible mock orders.

    Attributes:
        customers: Fixed pool of Delivery records
        generated: order_uids produced so far (pool for re-publishing)
    """

    def __init__(self, seed: int = RANDOM_SEED, republish_ratio: float = REPUBLISH_RATIO):
        self.seed = seed
        self.republish_ratio = republish_ratio
        self.random = random.Random(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)

        self.customers = self._generate_customers(NUM_CUSTOMERS)
        self.generated: List[str] = []

    def _generate_customers(self, count: int) -> List[Dict[str, object]]:
        customers = []
        for i in range(1, count + 1):
            name = self.fake.name()
            customers.append({
                "customer_id": f"cust-{i:05d}",
                "delivery": Delivery(
                    name=name,
                    phone=self.fake.phone_number(),
                    zip=self.fake.postcode(),
                    city=self.fake.city(),
                    address=self.fake.street_address(),
                    region=self.fake.state(),
                    email=f"{name.lower().replace(' ', '.')}.{i}@example.com",
                ),
            })
        return customers

    def _random_token(self, length: int) -> str:
        alphabet = "abcdef0123456789"
        return "".join(self.random.choice(alphabet) for _ in range(length))

    def generate_order_uid(self) -> str:
        """Hex identifier ending in 'test', e.g. 'b563feb7b2b84b6test'."""
        return self._random_token(ORDER_UID_LENGTH - 4) + "test"

    def generate_items(self, track_number: str, count: int) -> List[Item]:
        """Pick ``count`` distinct catalogue lines."""
        items = []
        for name, brand, price in self.random.sample(CATALOGUE, count):
            sale = self.random.choice([0, 0, 10, 15, 30, 50])
            items.append(Item(
                chrt_id=self.random.randint(1_000_000, 9_999_999),
                track_number=track_number,
                price=price,
                rid=self._random_token(21) + "test",
                name=name,
                sale=sale,
                size=self.random.choice(SIZES),
                total_price=price * (100 - sale) // 100,
                nm_id=self.random.randint(1_000_000, 9_999_999),
                brand=brand,
                status=202,
            ))
        return items

    def generate_order(self, order_uid: Optional[str] = None) -> Order:
        """
        Generate a complete, valid order.

        Args:
            order_uid: Reuse this identifier instead of generating one

        Returns:
            Order whose payment.goods_total equals the sum of item
            total_price and whose amount adds delivery_cost and custom_fee
        """
        if order_uid is None:
            order_uid = self.generate_order_uid()
            self.generated.append(order_uid)

        customer = self.random.choice(self.customers)
        track_number = "WB" + self._random_token(10).upper()
        items = self.generate_items(track_number, self.random.randint(0, MAX_ITEMS_PER_ORDER))

        goods_total = sum(item.total_price for item in items)
        delivery_cost = self.random.choice([0, 15000, 30000])
        custom_fee = 0
        created = datetime(2021, 11, 26, tzinfo=timezone.utc) + timedelta(
            seconds=self.random.randint(0, 365 * 24 * 3600)
        )

        order = Order(
            order_uid=order_uid,
            track_number=track_number,
            entry="WBIL",
            delivery=customer["delivery"],
            payment=Payment(
                transaction=order_uid,
                request_id="",
                currency=self.random.choice(CURRENCIES),
                provider=self.random.choice(PROVIDERS),
                amount=goods_total + delivery_cost + custom_fee,
                payment_dt=int(created.timestamp()),
                bank=self.random.choice(BANKS),
                delivery_cost=delivery_cost,
                goods_total=goods_total,
                custom_fee=custom_fee,
            ),
            items=items,
            locale=self.random.choice(LOCALES),
            internal_signature="",
            customer_id=customer["customer_id"],
            delivery_service=self.random.choice(DELIVERY_SERVICES),
            shardkey=str(self.random.randint(1, 10)),
            sm_id=self.random.randint(1, 100),
            date_created=created,
            oof_shard=str(self.random.randint(1, 2)),
        )
        return order

    def next_order(self) -> Order:
        """
        Next order for the load stream.

        Usually a fresh order; with probability ``republish_ratio`` a new
        version of an earlier order (same order_uid, new contents).
        """
        if self.generated and self.random.random() < self.republish_ratio:
            return self.generate_order(order_uid=self.random.choice(self.generated))
        return self.generate_order()
