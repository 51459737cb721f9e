"""Admin annotations on an order: notes and tracking."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from orderflow.domain import orderflow
from orderflow.order.order import Order


@orderflow.command(part_of="Order")
class AddOrderNote:
    order_id = Identifier(required=True)
    note = String(required=True, max_length=1000)
    author = String(max_length=100)


@orderflow.command(part_of="Order")
class UpdateOrderTracking:
    order_id = Identifier(required=True)
    tracking_number = String(required=True, max_length=100)
    carrier = String(max_length=100)
    tracking_url = String(max_length=1024)


@orderflow.command_handler(part_of=Order)
class OrderAnnotationHandler:
    @handle(AddOrderNote)
    def add_note(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.add_note(command.note, author=command.author)
        repo.add(order)

    @handle(UpdateOrderTracking)
    def update_tracking(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.update_tracking(command.tracking_number, carrier=command.carrier, url=command.tracking_url)
        repo.add(order)
