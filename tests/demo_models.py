"""
Models used by the tests: a small product catalogue

Category 1-n Product (the products block the deletion of their category)
Product n-m Tag (association table with a pivot column)
Product 1-n Review (cascading)
Supplier 1-n Product (soft deletable suppliers)
"""
from flask_sqlalchemy import SQLAlchemy
from safcrud import SAFCRUDBase

db = SQLAlchemy()

product_tags = db.Table(
    "product_tags",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("tag_id", db.Integer, db.ForeignKey("tags.id"), primary_key=True),
    db.Column("position", db.Integer, nullable=True),
)


class Category(SAFCRUDBase, db.Model):
    """
    description: Product categories
    """

    __tablename__ = "categories"
    _s_unique_fields = ("name",)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    products = db.relationship("Product", back_populates="category")


class Supplier(SAFCRUDBase, db.Model):
    __tablename__ = "suppliers"
    _s_soft_delete_column = "deleted_at"
    _s_unique_fields = ("name",)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)
    products = db.relationship("Product", back_populates="supplier")


class Tag(SAFCRUDBase, db.Model):
    __tablename__ = "tags"
    _s_unique_fields = ("label",)

    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(50), nullable=False)


class Product(SAFCRUDBase, db.Model):
    __tablename__ = "products"
    _s_unique_fields = ("sku",)
    _s_rules = {"price": {"minimum": 0}}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    sku = db.Column(db.String(32), nullable=True)
    price = db.Column(db.Float, nullable=False)
    released_at = db.Column(db.DateTime, nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)

    category = db.relationship(Category, back_populates="products")
    supplier = db.relationship(Supplier, back_populates="products")
    tags = db.relationship(Tag, secondary=product_tags)
    reviews = db.relationship("Review", back_populates="product", cascade="all, delete-orphan")


class Review(SAFCRUDBase, db.Model):
    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    rating = db.Column(db.Integer, nullable=False)
    body = db.Column(db.Text, nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product = db.relationship(Product, back_populates="reviews")


MODELS = (Category, Supplier, Tag, Product, Review)
