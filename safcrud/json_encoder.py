# safcrud to json encoding

import datetime
import decimal
import json
from uuid import UUID
from flask.json.provider import DefaultJSONProvider
import safcrud
from .base import SAFCRUDBase
from .config import is_debug


class _SafCrudJSONEncoder:
    """
    JSON encoding for safcrud objects (SAFCRUDBase instances and common column types)
    """

    # pylint: disable=too-many-return-statements,arguments-differ,protected-access,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if obj is None:
            return None
        if isinstance(obj, SAFCRUDBase):
            return obj._s_encode()
        if isinstance(obj, datetime.datetime):
            return obj.isoformat(" ")
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, decimal.Decimal):
            return float(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, set):
            return list(obj)
        if isinstance(obj, bytes):
            if obj == b"":
                return ""
            safcrud.log.debug("SafCrudJSONEncoder: serializing bytes obj")
            return obj.hex()

        if not is_debug():  # pragma: no cover
            safcrud.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
            return {"error": "SafCrudJSONEncoder invalid object"}

        return str(obj)


class SafCrudJSONProvider(_SafCrudJSONEncoder, DefaultJSONProvider):
    """
    Flask JSON encoding
    """

    sort_keys = False


class SafCrudJSONEncoder(_SafCrudJSONEncoder, json.JSONEncoder):
    """
    Common JSON encoding, used to export the documentation
    """

    pass
