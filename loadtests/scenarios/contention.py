"""Flash-sale contention scenario.

Every user races for the same small pool of stock. The stock ledger must
never oversell: once the product is exhausted, checkouts fail with a
``CartInvalid`` shortfall and are counted as expected rejections rather
than failures.
"""

import random

from locust import HttpUser, between, events, task

from loadtests.data_generators import checkout_data, product_data
from loadtests.helpers.response import extract_error_detail
from loadtests.scenarios.checkout import ADMIN_HEADERS, CUSTOMER_HEADERS

FLASH_SALE_STOCK = 50
_flash_sale = {"product_id": None, "registering": False, "sold": 0, "rejected": 0}


class FlashSaleUser(HttpUser):
    """Adds one or two units of the flash-sale product and checks out (COD)."""

    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Only the first user to start registers the product
        if _flash_sale["product_id"] is None and not _flash_sale["registering"]:
            _flash_sale["registering"] = True
            payload = product_data(stock=FLASH_SALE_STOCK, price=99900)
            with self.client.post(
                "/products",
                json=payload,
                headers=ADMIN_HEADERS,
                catch_response=True,
                name="POST /products (flash sale)",
            ) as resp:
                if resp.status_code == 201:
                    _flash_sale["product_id"] = resp.json()["product_id"]
                else:
                    resp.failure(f"Register flash product failed: {resp.status_code} - {extract_error_detail(resp)}")

    @task
    def grab(self):
        product_id = _flash_sale["product_id"]
        if product_id is None:
            return

        resp = self.client.post("/carts", json={}, headers=CUSTOMER_HEADERS, name="POST /carts")
        if resp.status_code != 201:
            return
        cart_id = resp.json()["cart_id"]

        quantity = random.randint(1, 2)
        self.client.post(
            f"/carts/{cart_id}/items",
            json={"product_id": product_id, "quantity": quantity},
            headers=CUSTOMER_HEADERS,
            name="POST /carts/{id}/items",
        )

        with self.client.post(
            "/checkout",
            json=checkout_data(cart_id, "cod"),
            headers=CUSTOMER_HEADERS,
            catch_response=True,
            name="POST /checkout (flash sale)",
        ) as resp:
            if resp.status_code == 201:
                _flash_sale["sold"] += quantity
                if _flash_sale["sold"] > FLASH_SALE_STOCK:
                    resp.failure(f"Oversold: {_flash_sale['sold']} units of {FLASH_SALE_STOCK}")
            elif resp.status_code in (400, 409):
                # Shortfall at staging (400) or at reservation (409)
                _flash_sale["rejected"] += 1
                resp.success()
            else:
                resp.failure(f"Checkout failed: {resp.status_code} - {extract_error_detail(resp)}")


@events.test_stop.add_listener
def report_flash_sale(**_kwargs):
    print(f"[LOADTEST] Flash sale: sold {_flash_sale['sold']}/{FLASH_SALE_STOCK}, rejected {_flash_sale['rejected']}")
