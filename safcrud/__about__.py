__version__ = "1.0.0"
__description__ = "safcrud : generic SqlAlchemy Flask CRUD api with Swagger2 docs"
