"""
Tests for the server-synchronised basket.

These tests verify that:
- sync() mirrors the server's basket lines and totals
- mutations are sent as deltas and applied locally only after success
- products not in the basket are ignored by remove()
- only the owning customer may change a basket
- BasketRegistry hands out one basket per customer and can be flushed
- concurrent mutations send deltas that add up to the local quantity
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List

import pytest

from tesco.basket import Basket, BasketItem, BasketRegistry
from tesco.client import TescoClient
from tesco.errors import InvalidArgumentError, NotAuthenticatedError, NotFoundError, TescoApiError
from tesco.models import EAN

from fakes import ANONYMOUS_LOGIN, OK, customer_login, product_record

EMPTY_BASKET = {
    "StatusCode": 0,
    "BasketId": "555",
    "BasketGuidePrice": "0.00",
    "BasketGuideMultiBuySavings": "0.00",
    "BasketTotalClubcardPoints": "0",
    "BasketQuantity": "0",
    "BasketLines": [],
}


def deltas(transport) -> List[int]:
    return [int(call["changequantity"]) for call in transport.calls_for("changebasket")]


@pytest.fixture
def products(customer_client, transport):
    """Three detailed products, registered without network traffic."""
    registry = customer_client.products
    return [
        registry.get_or_create(str(i), product_record(i, MaximumPurchaseQuantity=5))
        for i in (101, 102, 103)
    ]


@pytest.fixture
def basket(customer_client, transport) -> Basket:
    transport.on("listbasket", EMPTY_BASKET)
    transport.on("changebasket", OK)
    basket = customer_client.basket()
    transport.reset()
    return basket


class TestBasketSync:
    """Test full reconciliation against the server."""

    def test_sync_reads_totals_and_lines(self, customer_client, transport):
        """Test that sync() decodes the totals and every basket line."""
        transport.on("listbasket", {
            "StatusCode": 0,
            "BasketId": "12345",
            "BasketGuidePrice": "7.45",
            "BasketGuideMultiBuySavings": "1.50",
            "BasketTotalClubcardPoints": "7",
            "BasketQuantity": "3",
            "BasketLines": [
                {
                    "ProductId": "101",
                    "BasketLineQuantity": "2",
                    "BasketLineErrorMessage": "",
                    "BasketLinePromoMessage": "Any 2 for £3",
                    "NoteForPersonalShopper": "ripe please",
                    "Name": "Bananas",
                },
                {"ProductId": 102, "BasketLineQuantity": 1},
            ],
        })
        basket = customer_client.basket()

        assert basket.synced
        assert basket.basket_id == 12345
        assert basket.guide_price == pytest.approx(7.45)
        assert basket.multi_buy_savings == pytest.approx(1.50)
        assert basket.clubcard_points == 7
        assert basket.quantity == 3
        assert len(basket) == 2

        bananas = customer_client.products.get("101")
        line = basket[bananas]
        assert isinstance(line, BasketItem)
        assert line.quantity == 2
        assert line.note_for_shopper == "ripe please"
        assert line.promo_message == "Any 2 for £3"
        assert line.name == "Bananas"
        assert line.product_id == "101"

    def test_sync_resolves_lines_through_registry(self, customer_client, transport, products):
        """Test that lines use the registry's Products without erasing details."""
        transport.on("listbasket", dict(EMPTY_BASKET, BasketLines=[{"ProductId": "101", "BasketLineQuantity": 1}]))
        basket = customer_client.basket()
        assert products[0] in basket
        assert list(basket) == [products[0]]
        # The sparse line did not erase the product's details
        assert products[0].name == "Product 101"

    def test_sync_discards_local_only_lines(self, basket, transport, products):
        """Test that sync() drops lines the server does not have."""
        basket.add(products[0])
        assert products[0] in basket

        basket.sync()
        assert products[0] not in basket
        assert len(basket) == 0

    def test_sync_replaces_quantities_with_server_values(self, basket, transport, products):
        """Test that sync() overwrites local quantities."""
        basket.set_quantity(products[0], 4)
        transport.on("listbasket", dict(EMPTY_BASKET, BasketLines=[{"ProductId": "101", "BasketLineQuantity": 3}]))
        basket.sync()
        assert basket[products[0]].quantity == 3


class TestBasketMutations:
    """Test delta requests and the local view."""

    def test_add_sends_plus_one(self, basket, transport, products):
        """Test that each add() sends +1 and increments the line."""
        basket.add(products[0])
        basket.add(products[0])

        assert deltas(transport) == [1, 1]
        assert basket[products[0]].quantity == 2
        call = transport.calls_for("changebasket")[0]
        assert call["productid"] == "101"

    def test_add_many(self, basket, transport, products):
        """Test adding several products with one note."""
        basket.add(products, note="no substitutes")
        assert deltas(transport) == [1, 1, 1]
        assert [basket[p].quantity for p in products] == [1, 1, 1]
        assert all(call["noteforshopper"] == "no substitutes" for call in transport.calls_for("changebasket"))

    def test_add_rejects_non_products_before_any_request(self, basket, transport, products):
        """Test that non-Products are rejected before anything is sent."""
        with pytest.raises(InvalidArgumentError):
            basket.add([products[0], "101"])
        with pytest.raises(InvalidArgumentError):
            basket.add("101")
        with pytest.raises(InvalidArgumentError):
            basket.add(101)
        assert transport.calls == []
        assert len(basket) == 0

    def test_set_quantity_sends_deltas(self, basket, transport, products):
        """Test that set_quantity 3 then 1 sends +3 then -2."""
        basket.set_quantity(products[0], 3)
        basket.set_quantity(products[0], 1)

        assert deltas(transport) == [3, -2]
        assert basket[products[0]].quantity == 1

    def test_set_quantity_after_add(self, basket, transport, products):
        """Test that the delta is computed from the current line quantity."""
        basket.add(products[0])
        basket.set_quantity(products[0], 4)
        assert deltas(transport) == [1, 3]
        assert basket[products[0]].quantity == 4

    def test_set_quantity_zero_removes_line(self, basket, transport, products):
        """Test that setting 0 removes the local line."""
        basket.set_quantity(products[0], 2)
        basket.set_quantity(products[0], 0)
        assert deltas(transport) == [2, -2]
        assert products[0] not in basket

    @pytest.mark.parametrize("amount", [-1, 6, 2.0, "3", None, True])
    def test_set_quantity_bounds(self, basket, transport, products, amount):
        """Test that amounts outside [0, max_quantity] or non-ints are rejected."""
        with pytest.raises(InvalidArgumentError):
            basket.set_quantity(products[0], amount)
        assert transport.calls == []

    def test_set_quantity_upper_bound_is_inclusive(self, basket, products):
        """Test that max_quantity itself is allowed."""
        basket.set_quantity(products[0], 5)
        assert basket[products[0]].quantity == 5

    def test_set_quantity_fetches_details_for_bound(self, basket, transport, customer_client):
        """Test that an unresolved product loads details to check the bound."""
        transport.on("productsearch", {"StatusCode": 0, "Products": [product_record(900, MaximumPurchaseQuantity=2)]})
        unresolved = customer_client.product("900")

        with pytest.raises(InvalidArgumentError):
            basket.set_quantity(unresolved, 3)
        assert len(transport.calls_for("productsearch")) == 1
        assert transport.calls_for("changebasket") == []

    def test_set_quantity_rejects_non_products(self, basket):
        """Test that set_quantity requires a Product."""
        with pytest.raises(InvalidArgumentError):
            basket.set_quantity("101", 1)

    @pytest.mark.parametrize("amount", ["3", -1, 2.5])
    def test_malformed_amount_rejected_before_detail_fetch(self, basket, transport, customer_client, amount):
        """Test that a malformed amount is rejected without loading the product's details."""
        transport.on("productsearch", {"StatusCode": 0, "Products": [product_record(900)]})
        unresolved = customer_client.product("900")

        with pytest.raises(InvalidArgumentError):
            basket.set_quantity(unresolved, amount)
        assert transport.calls == []
        assert not unresolved.is_detailed

    def test_set_quantity_to_current_sends_nothing(self, basket, transport, products):
        """Test that setting the current quantity again sends no request."""
        basket.set_quantity(products[0], 2)
        basket.set_quantity(products[0], 2)
        assert deltas(transport) == [2]

    def test_set_quantity_zero_on_absent_product_sends_nothing(self, basket, transport, products):
        """Test that setting 0 for a product not in the basket sends no request."""
        basket.set_quantity(products[0], 0)
        assert transport.calls == []
        assert products[0] not in basket

    def test_set_quantity_same_amount_with_new_note(self, basket, transport, products):
        """Test that a note change at the same quantity is still sent as a zero delta."""
        basket.set_quantity(products[0], 2)
        basket.set_quantity(products[0], 2, note="ripe ones")

        assert deltas(transport) == [2, 0]
        assert transport.calls_for("changebasket")[-1]["noteforshopper"] == "ripe ones"
        assert basket[products[0]].note_for_shopper == "ripe ones"

    def test_failed_request_leaves_local_view_unchanged(self, basket, transport, products):
        """Test that a rejected delta does not change the local view."""
        basket.set_quantity(products[0], 2)
        transport.on("changebasket", {"StatusCode": 999})

        with pytest.raises(TescoApiError):
            basket.set_quantity(products[0], 4)
        with pytest.raises(TescoApiError):
            basket.add(products[1])

        assert basket[products[0]].quantity == 2
        assert products[1] not in basket

    def test_remove_sends_negative_quantity(self, basket, transport, products):
        """Test that remove() sends minus the line quantity."""
        basket.set_quantity(products[0], 3)
        basket.remove(products[0])

        assert deltas(transport) == [3, -3]
        assert products[0] not in basket

    def test_remove_absent_product_is_noop(self, basket, transport, products):
        """Test that removing absent products sends nothing."""
        basket.remove(products[1])
        basket.remove([products[1], products[2]])
        assert transport.calls == []

    def test_remove_mixed(self, basket, transport, products):
        """Test removing a mix of present and absent products."""
        basket.add(products[0])
        transport.reset()
        basket.remove(products)
        assert deltas(transport) == [-1]
        assert len(basket) == 0

    def test_set_note(self, basket, transport, products):
        """Test that set_note() sends a zero delta with the note."""
        basket.add(products[0])
        basket.set_note(products[0], "green ones")

        call = transport.calls_for("changebasket")[-1]
        assert call["changequantity"] == "0"
        assert call["noteforshopper"] == "green ones"
        assert basket[products[0]].note_for_shopper == "green ones"
        assert basket[products[0]].quantity == 1

    def test_set_note_requires_line(self, basket, transport, products):
        """Test that set_note() on an absent product raises NotFoundError."""
        with pytest.raises(NotFoundError):
            basket.set_note(products[0], "anything")
        assert transport.calls == []

    def test_existing_note_is_kept_when_omitted(self, basket, transport, products):
        """Test that an omitted note re-sends the existing one."""
        basket.add(products[0], note="large")
        basket.set_quantity(products[0], 3)
        basket.add(products[0])

        notes = [call.get("noteforshopper") for call in transport.calls_for("changebasket")]
        assert notes == ["large", "large", "large"]
        assert basket[products[0]].note_for_shopper == "large"

    def test_clear_removes_every_line(self, basket, transport, products):
        """Test that clear() sends one removal per line."""
        basket.set_quantity(products[0], 2)
        basket.add(products[1])
        transport.reset()

        basket.clear()

        assert sorted(deltas(transport)) == [-2, -1]
        assert len(basket) == 0

    def test_basket_item_forwards_product_attributes(self, basket, products):
        """Test that BasketItem exposes its product's attributes."""
        basket.add(products[0])
        item = basket[products[0]]
        assert item.product is products[0]
        assert item.max_quantity == 5
        assert item.image_url == "http://img.tesco.com/101.jpg"
        assert item.barcode == EAN(code="50101")
        assert item.offer is None


class TestBasketOwnership:
    """Only the owning customer may change a basket."""

    def test_other_customer_cannot_change_basket(self, basket, transport, products, customer_client):
        """Test that a session for another customer cannot change the basket."""
        transport.on("login", customer_login(99))
        customer_client.login("other@b.com", "pw")
        transport.reset()

        with pytest.raises(NotAuthenticatedError):
            basket.add(products[0])
        with pytest.raises(NotAuthenticatedError):
            basket.set_quantity(products[0], 1)
        with pytest.raises(NotAuthenticatedError):
            basket.remove(products[0])
        with pytest.raises(NotAuthenticatedError):
            basket.set_note(products[0], "x")
        with pytest.raises(NotAuthenticatedError):
            basket.clear()

        assert transport.calls == []

    def test_anonymous_session_cannot_change_basket(self, basket, transport, products, customer_client):
        """Test that an anonymous session cannot change the basket."""
        transport.on("login", ANONYMOUS_LOGIN)
        customer_client.login()
        transport.reset()
        with pytest.raises(NotAuthenticatedError):
            basket.add(products[0])
        assert transport.calls == []

    def test_owner_can_change_after_logging_back_in(self, basket, transport, products, customer_client):
        """Test that the owner regains access after logging back in."""
        transport.on("login", customer_login(99))
        customer_client.login("other@b.com", "pw")
        transport.on("login", customer_login(42))
        customer_client.login("a@b.com", "pw")

        basket.add(products[0])
        assert basket[products[0]].quantity == 1


class TestBasketRegistry:
    """One basket per customer."""

    def test_same_customer_gets_same_basket(self, customer_client, transport):
        """Test that a customer always gets the same, once-synced basket."""
        transport.on("listbasket", EMPTY_BASKET)
        first = customer_client.basket()
        second = Basket.for_customer(customer_client)

        assert first is second
        assert first.customer_id == "42"
        # Synced once, on first use
        assert len(transport.calls_for("listbasket")) == 1

    def test_different_customers_get_different_baskets(self, customer_client, transport):
        """Test that each customer has a separate basket."""
        transport.on("listbasket", EMPTY_BASKET)
        basket_42 = customer_client.basket()

        transport.on("login", customer_login(99))
        customer_client.login("other@b.com", "pw")
        basket_99 = customer_client.basket()

        assert basket_42 is not basket_99
        assert basket_99.customer_id == "99"
        assert len(customer_client.baskets) == 2
        assert 42 in customer_client.baskets

    def test_anonymous_client_has_no_basket(self, client, transport):
        """Test that anonymous sessions cannot obtain a basket."""
        client.login()
        with pytest.raises(NotAuthenticatedError):
            client.basket()

    def test_flush_forces_resync(self, customer_client, transport):
        """Test that flush() forgets baskets so the next one resyncs."""
        transport.on("listbasket", EMPTY_BASKET)
        first = customer_client.basket()

        customer_client.baskets.flush()
        assert len(customer_client.baskets) == 0

        second = customer_client.basket()
        assert second is not first
        assert len(transport.calls_for("listbasket")) == 2

    def test_registry_shared_between_clients(self, transport):
        """Test that two clients of one customer share a basket through a shared registry."""
        shared = BasketRegistry()
        transport.on("login", customer_login(42))
        transport.on("listbasket", EMPTY_BASKET)

        phone = TescoClient("dev", "app", transport=transport, baskets=shared)
        laptop = TescoClient("dev", "app", transport=transport, baskets=shared)
        phone.login("a@b.com", "pw")
        laptop.login("a@b.com", "pw")

        assert phone.basket() is laptop.basket()
        assert len(transport.calls_for("listbasket")) == 1


class TestSharedBasketSessions:
    """A basket shared by several clients of the same customer."""

    @pytest.fixture
    def shared_clients(self, transport):
        shared = BasketRegistry()
        transport.on("login", customer_login(42))
        transport.on("listbasket", EMPTY_BASKET)
        transport.on("changebasket", OK)

        phone = TescoClient("dev", "app", transport=transport, baskets=shared)
        laptop = TescoClient("dev", "app", transport=transport, baskets=shared)
        phone.login("a@b.com", "pw")
        laptop.login("a@b.com", "pw")
        return phone, laptop

    def test_owner_keeps_basket_when_other_client_switches_customer(self, shared_clients, transport):
        """Test that another client fetching the basket and then switching customer does not lock the owner out."""
        phone, laptop = shared_clients
        basket = phone.basket()
        assert laptop.basket() is basket

        transport.on("login", customer_login(99))
        laptop.login("other@b.com", "pw")
        transport.reset()

        product = phone.products.get_or_create("101", product_record(101))
        basket.add(product)

        assert basket[product].quantity == 1
        assert transport.calls_for("changebasket")[0]["sessionkey"] == "session-42"

    def test_basket_moves_to_active_session_when_owner_leaves(self, shared_clients, transport):
        """Test that the basket follows a client still logged in as its customer once the bound one leaves."""
        phone, laptop = shared_clients
        basket = phone.basket()

        transport.on("login", ANONYMOUS_LOGIN)
        phone.login()
        with pytest.raises(NotAuthenticatedError):
            basket.add(phone.products.get_or_create("101", product_record(101)))

        assert laptop.basket() is basket
        product = laptop.products.get_or_create("102", product_record(102))
        basket.add(product)
        assert basket[product].quantity == 1


class TestConcurrentBasketChanges:
    """Concurrent mutations of one basket stay consistent with the deltas sent."""

    @pytest.fixture
    def slow_basket(self, basket, transport):
        def slow_change(params):
            # Widen the window between reading the quantity and applying the change
            time.sleep(0.001)
            return OK

        transport.on("changebasket", slow_change)
        return basket

    def test_concurrent_adds(self, slow_basket, transport, products):
        """Test that concurrent add() calls send one +1 each and all are counted."""
        workers, adds_each = 8, 10
        barrier = threading.Barrier(workers)

        def add_many(_):
            barrier.wait()
            for _ in range(adds_each):
                slow_basket.add(products[0])

        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(add_many, range(workers)))

        assert deltas(transport) == [1] * (workers * adds_each)
        assert slow_basket[products[0]].quantity == workers * adds_each

    def test_concurrent_set_quantity_and_add(self, slow_basket, transport, products):
        """Test that interleaved set_quantity() and add() deltas sum to the final quantity."""
        workers = 8
        barrier = threading.Barrier(workers)

        def mutate(worker):
            barrier.wait()
            for step in range(10):
                if (worker + step) % 3 == 0:
                    slow_basket.add(products[1])
                else:
                    slow_basket.set_quantity(products[1], (worker + step) % 4)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(mutate, range(workers)))

        item = slow_basket.get(products[1])
        final_quantity = item.quantity if item else 0
        assert sum(deltas(transport)) == final_quantity
