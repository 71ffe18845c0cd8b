import pytest
from flask import Flask
from sqlalchemy import event
from safcrud import SafCrudApi
from demo_models import MODELS, db


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_app(**config):
    app = Flask("safcrud_tests")
    app.config.update(
        SQLALCHEMY_DATABASE_URI="sqlite://",
        TESTING=True,
        ENABLE_MONITORING=False,
        DEFAULT_PER_PAGE=15,
        MAX_PER_PAGE=100,
        RELATION_BATCH_SIZE=1000,
    )
    app.config.update(config)
    db.init_app(app)
    return app


@pytest.fixture
def app():
    app = create_app()
    with app.app_context():
        event.listen(db.engine, "connect", _enable_foreign_keys)
        db.create_all()
        api = SafCrudApi(app, db=db)
        api.expose(*MODELS)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def api(app):
    return app.extensions["safcrud"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def registry(api):
    return api.registry


@pytest.fixture
def category(client):
    response = client.post("/api/categories", json={"name": "Tools"})
    assert response.status_code == 201
    return response.get_json()["data"]
