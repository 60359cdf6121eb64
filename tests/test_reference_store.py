# Sales Notifier Tests - Reference Store
#
# Tests for:
# - Key and hash primitives
# - Sales accounts, outlets, products
# - Admin number and template settings

import json

import pytest

from sales_notifier.infrastructure.persistence import ReferenceStore


class TestPrimitives:

    def test_get_set_delete(self, store):
        assert store.get("missing") is None
        store.set("k", {"a": 1})
        assert store.get("k") == {"a": 1}
        assert store.delete("k") is True
        assert store.delete("k") is False

    def test_hash_keeps_insertion_order(self, store):
        assert store.hset("h", {"b": "2", "a": "1"}) == 2
        assert store.hset("h", {"b": "3"}) == 0
        assert store.hgetall("h") == {"b": "3", "a": "1"}
        assert store.hget("h", "a") == "1"
        assert store.hdel("h", "a") is True
        assert store.hget("h", "a") is None

    def test_init_is_idempotent(self, tmp_path):
        store = ReferenceStore(tmp_path / "again.db")
        store.init()
        store.set("k", "v")
        store.init()
        assert store.get("k") == "v"


class TestSalesAccounts:

    def test_add_and_verify(self, store):
        store.add_sales_account("s1", "Budi", "rahasia")
        assert store.get_sales_names() == {"s1": "Budi"}
        assert store.verify_sales_password("s1", "rahasia")
        assert not store.verify_sales_password("s1", "salah")
        assert not store.verify_sales_password("nobody", "rahasia")

    def test_stored_under_sales_data_key(self, store):
        store.add_sales_account("s1", "Budi", "pw")
        assert store.get("sales_data") == {"s1": {"name": "Budi", "password": "pw"}}

    def test_blank_name_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_sales_account("s1", "  ", "pw")

    def test_delete(self, store):
        store.add_sales_account("s1", "Budi", "pw")
        assert store.delete_sales_account("s1") is True
        assert store.delete_sales_account("s1") is False
        assert store.get_sales_names() == {}


class TestOutlets:

    def test_sequential_ids(self, store):
        assert store.add_outlet("Toko A") == "outlet1"
        assert store.add_outlet("Toko B") == "outlet2"
        store.delete_outlet("outlet1")
        assert store.add_outlet("Toko C") == "outlet3"
        assert store.get_outlet_names() == {"outlet2": "Toko B", "outlet3": "Toko C"}

    def test_ids_continue_after_gaps(self, store):
        store.hset("outlets", {"outlet7": "Lama", "custom": "Lain"})
        assert store.next_outlet_id() == "outlet8"

    def test_blank_name_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_outlet(" ")


class TestProducts:

    def test_product_id_slug(self):
        assert ReferenceStore.product_id_for("Kopi Susu 1L") == "kopi_susu_1l"
        assert ReferenceStore.product_id_for("  Teh (Manis)! ") == "teh_manis"

    def test_add_and_list(self, store):
        product = store.add_product("Kopi Susu")
        assert product.id == "kopi_susu"
        assert json.loads(store.hget("products", "kopi_susu")) == {"id": "kopi_susu", "name": "Kopi Susu"}
        assert store.get_products()["kopi_susu"].name == "Kopi Susu"

    def test_unreadable_entries_are_skipped(self, store):
        store.add_product("Teh")
        store.hset("products", {"broken": "not json"})
        assert list(store.get_products()) == ["teh"]

    def test_name_without_letters_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_product("!!!")


class TestAdminSettings:

    def test_admin_number_is_trimmed(self, store):
        assert store.get_admin_number() is None
        store.set_admin_number("  08123456789 ")
        assert store.get_admin_number() == "08123456789"

    def test_empty_admin_number_reads_as_unset(self, store):
        store.set_admin_number("")
        assert store.get_admin_number() is None

    def test_template(self, store):
        assert store.get_notification_template() is None
        store.set_notification_template("Hi {sales_name}")
        assert store.get_notification_template() == "Hi {sales_name}"
