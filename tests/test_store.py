"""
Durable store adapter tests.

HTTP and S3 adapters are exercised against mocked clients; the SQLite store
runs against a temporary database file.
"""

import importlib.util
import os
import tempfile
import unittest
from unittest import mock

import requests

from willvault.errors import NotFound, StorageError, StorageUnavailable, ValidationError
from willvault.hashing import content_locator
from willvault.service.db import SqliteDurableStore
from willvault.store import HttpDurableStore, InMemoryDurableStore, S3ObjectLockStore

HAS_BOTOCORE = importlib.util.find_spec("botocore") is not None


def response(status_code=200, json_body=None, content=b""):
    r = mock.Mock(spec=requests.Response)
    r.status_code = status_code
    r.content = content
    if json_body is None:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = json_body
    return r


class TestInMemoryDurableStore(unittest.IsolatedAsyncioTestCase):

    async def test_put_get(self):
        store = InMemoryDurableStore()
        locator = await store.put(b"blob", "application/pdf")
        self.assertEqual(locator, content_locator(b"blob"))
        self.assertEqual(await store.get(locator), b"blob")
        self.assertTrue(await store.exists(locator))

    async def test_append_only(self):
        store = InMemoryDurableStore()
        first = await store.put(b"blob", "application/pdf")
        second = await store.put(b"blob", "text/plain")
        self.assertEqual(first, second)
        self.assertEqual(len(store), 1)
        self.assertEqual(store.content_type(first), "application/pdf")

    async def test_missing(self):
        store = InMemoryDurableStore()
        with self.assertRaises(NotFound) as ctx:
            await store.get("sha256:" + "0" * 64)
        self.assertEqual(ctx.exception.locator, "sha256:" + "0" * 64)
        self.assertFalse(await store.exists("sha256:" + "0" * 64))


class TestSqliteDurableStore(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "data", "blobs.db")
        self.store = SqliteDurableStore(self.path)

    def tearDown(self):
        self.store.close()
        self.tmp.cleanup()

    async def test_put_get(self):
        locator = await self.store.put(b"blob", "application/pdf")
        self.assertEqual(await self.store.get(locator), b"blob")
        self.assertEqual(self.store.content_type(locator), "application/pdf")

    async def test_append_only_and_stats(self):
        await self.store.put(b"one")
        await self.store.put(b"one")
        await self.store.put(b"three")
        self.assertEqual(self.store.get_stats(), {"blob_count": 2, "total_bytes": 8})

    async def test_missing(self):
        with self.assertRaises(NotFound):
            await self.store.get("sha256:" + "0" * 64)

    async def test_survives_reopen(self):
        locator = await self.store.put(b"durable")
        reopened = SqliteDurableStore(self.path)
        try:
            self.assertEqual(await reopened.get(locator), b"durable")
        finally:
            reopened.close()

    async def test_corrupted_row_fails_integrity_check(self):
        locator = await self.store.put(b"original")
        conn = self.store._get_connection()
        conn.execute("UPDATE blobs SET data=? WHERE locator=?", (b"tampered", locator))
        conn.commit()
        with self.assertRaises(StorageUnavailable):
            await self.store.get(locator)


class TestHttpDurableStore(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.store = HttpDurableStore("http://node.test/", timeout=5, session=self.session)

    async def test_put(self):
        locator = content_locator(b"blob")
        self.session.post.return_value = response(200, {"locator": locator})
        self.assertEqual(await self.store.put(b"blob", "application/pdf"), locator)
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "http://node.test/blobs")
        self.assertEqual(kwargs["headers"], {"Content-Type": "application/pdf"})
        self.assertEqual(kwargs["timeout"], 5)

    async def test_get_verifies_content(self):
        locator = content_locator(b"blob")
        self.session.get.return_value = response(200, content=b"blob")
        self.assertEqual(await self.store.get(locator), b"blob")
        self.session.get.return_value = response(200, content=b"other")
        with self.assertRaises(StorageUnavailable):
            await self.store.get(locator)

    async def test_status_mapping(self):
        locator = content_locator(b"blob")
        cases = [
            (404, NotFound),
            (429, StorageUnavailable),
            (500, StorageUnavailable),
            (503, StorageUnavailable),
            (403, StorageError),
        ]
        for status, error in cases:
            with self.subTest(status=status):
                self.session.get.return_value = response(status)
                with self.assertRaises(error):
                    await self.store.get(locator)

    async def test_put_too_large(self):
        self.session.post.return_value = response(413)
        with self.assertRaises(ValidationError):
            await self.store.put(b"blob")

    async def test_connection_errors_are_transient(self):
        for exc in (requests.ConnectionError("refused"), requests.Timeout("slow")):
            with self.subTest(error=type(exc).__name__):
                self.session.get.side_effect = exc
                with self.assertRaises(StorageUnavailable):
                    await self.store.get(content_locator(b"blob"))

    async def test_malformed_put_response(self):
        self.session.post.return_value = response(200, {"unexpected": True})
        with self.assertRaises(StorageUnavailable):
            await self.store.put(b"blob")


@unittest.skipUnless(HAS_BOTOCORE, "botocore not installed")
class TestS3ObjectLockStore(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.client = mock.Mock()
        self.store = S3ObjectLockStore("wills", prefix="vault", client=self.client)

    def client_error(self, code):
        from botocore.exceptions import ClientError
        return ClientError({"Error": {"Code": code}}, "op")

    async def test_put_writes_compliance_object(self):
        self.client.head_object.side_effect = self.client_error("404")
        locator = await self.store.put(b"blob", "application/pdf")
        self.assertEqual(locator, content_locator(b"blob"))
        kwargs = self.client.put_object.call_args.kwargs
        self.assertEqual(kwargs["Bucket"], "wills")
        self.assertEqual(kwargs["Key"], "vault/" + locator.split(":", 1)[1])
        self.assertEqual(kwargs["ObjectLockMode"], "COMPLIANCE")

    async def test_put_never_overwrites(self):
        self.client.head_object.return_value = {}
        await self.store.put(b"blob")
        self.client.put_object.assert_not_called()

    async def test_get(self):
        body = mock.Mock()
        body.read.return_value = b"blob"
        self.client.get_object.return_value = {"Body": body}
        self.assertEqual(await self.store.get(content_locator(b"blob")), b"blob")

    async def test_get_missing(self):
        self.client.get_object.side_effect = self.client_error("NoSuchKey")
        with self.assertRaises(NotFound):
            await self.store.get(content_locator(b"blob"))

    async def test_get_other_error_is_transient(self):
        self.client.get_object.side_effect = self.client_error("SlowDown")
        with self.assertRaises(StorageUnavailable):
            await self.store.get(content_locator(b"blob"))


if __name__ == "__main__":
    unittest.main()
