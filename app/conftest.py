from app.tests.fixtures_clients import *  # noqa
