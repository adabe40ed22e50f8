from __future__ import annotations

from ..extensions import db
from freshroute.time_utils import to_utc_z, to_iso_date


class KitchenSheet(db.Model):
    """
    Preparation worklist for one approved order (1:1).

    Items move unprepared -> prepared individually; the sheet completes only
    once every item is prepared.
    """
    __tablename__ = "kitchen_sheets"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_kitchen_sheets_order"),
        db.UniqueConstraint("sheet_number", name="uq_kitchen_sheets_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    sheet_number = db.Column(db.String(32), nullable=False)

    # pending | completed
    status = db.Column(db.String(16), nullable=False, default="pending")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("kitchen_sheet", uselist=False, lazy=True))
    items = db.relationship(
        "KitchenSheetItem",
        back_populates="sheet",
        cascade="all, delete-orphan",
        order_by="KitchenSheetItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "sheet_number": self.sheet_number,
            "status": self.status,
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class KitchenSheetItem(db.Model):
    __tablename__ = "kitchen_sheet_items"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    kitchen_sheet_id = db.Column(db.Integer, db.ForeignKey("kitchen_sheets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    prepared = db.Column(db.Boolean, nullable=False, default=False)
    prepared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    prepared_by = db.Column(db.String(64), nullable=True)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    sheet = db.relationship("KitchenSheet", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kitchen_sheet_id": self.kitchen_sheet_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "category": self.product.category if self.product else None,
            "unit": self.product.unit if self.product else None,
            "quantity": self.quantity,
            "prepared": self.prepared,
            "prepared_at": to_utc_z(self.prepared_at),
            "prepared_by": self.prepared_by,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
        }


class Delivery(db.Model):
    """
    Physical delivery of one approved order (1:1).

    STATUS: pending -> assigned -> in_transit -> delivered (forward only).
    Reaching 'delivered' unlocks returns processing and delivery payments.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_deliveries_order"),
        db.Index("ix_deliveries_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")
    driver_id = db.Column(db.String(64), nullable=True)

    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    proof_of_delivery_url = db.Column(db.String(512), nullable=True)
    recipient_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("delivery", uselist=False, lazy=True))
    store = db.relationship("Store")
    note = db.relationship("DeliveryNote", back_populates="delivery", uselist=False)
    temperature_logs = db.relationship(
        "TemperatureLog",
        back_populates="delivery",
        order_by="TemperatureLog.recorded_at",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "status": self.status,
            "driver_id": self.driver_id,
            "scheduled_at": to_utc_z(self.scheduled_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "proof_of_delivery_url": self.proof_of_delivery_url,
            "recipient_name": self.recipient_name,
            "notes": self.notes,
            "note_number": self.note.note_number if self.note else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class DeliveryNote(db.Model):
    __tablename__ = "delivery_notes"
    __table_args__ = (
        db.UniqueConstraint("delivery_id", name="uq_delivery_notes_delivery"),
        db.UniqueConstraint("note_number", name="uq_delivery_notes_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False)
    note_number = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    delivery = db.relationship("Delivery", back_populates="note")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "note_number": self.note_number,
            "created_at": to_utc_z(self.created_at),
        }


class TemperatureLog(db.Model):
    """Cold-chain reading taken during a delivery."""
    __tablename__ = "temperature_logs"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    temperature_c = db.Column(db.Float, nullable=False)
    location = db.Column(db.String(128), nullable=True)
    # manual | sensor
    source = db.Column(db.String(16), nullable=False, default="manual")
    is_excursion = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    recorded_by = db.Column(db.String(64), nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    delivery = db.relationship("Delivery", back_populates="temperature_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "product_id": self.product_id,
            "temperature_c": self.temperature_c,
            "location": self.location,
            "source": self.source,
            "is_excursion": self.is_excursion,
            "notes": self.notes,
            "recorded_by": self.recorded_by,
            "recorded_at": to_utc_z(self.recorded_at),
        }


class BarcodeLabel(db.Model):
    """
    Printable label for one kitchen sheet item (1:1).

    barcode and qr_code carry the same payload: PF-{sku}[-{batch}]-{epoch_ms}.
    """
    __tablename__ = "barcode_labels"
    __table_args__ = (
        db.UniqueConstraint("kitchen_sheet_item_id", name="uq_barcode_labels_item"),
        db.Index("ix_barcode_labels_barcode", "barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kitchen_sheet_item_id = db.Column(db.Integer, db.ForeignKey("kitchen_sheet_items.id"), nullable=False)

    barcode = db.Column(db.String(160), nullable=False)
    qr_code = db.Column(db.String(160), nullable=False)
    # barcode | qr_code | both
    label_type = db.Column(db.String(16), nullable=False, default="both")

    printed = db.Column(db.Boolean, nullable=False, default=False)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("KitchenSheetItem", backref=db.backref("label", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        item = self.item
        return {
            "id": self.id,
            "kitchen_sheet_item_id": self.kitchen_sheet_item_id,
            "kitchen_sheet_id": item.kitchen_sheet_id if item else None,
            "sku": item.product.sku if item and item.product else None,
            "product_name": item.product.name if item and item.product else None,
            "quantity": item.quantity if item else None,
            "barcode": self.barcode,
            "qr_code": self.qr_code,
            "label_type": self.label_type,
            "printed": self.printed,
            "printed_at": to_utc_z(self.printed_at),
            "created_at": to_utc_z(self.created_at),
        }


class GpsLog(db.Model):
    """Driver position fix taken during a delivery."""
    __tablename__ = "gps_logs"
    __table_args__ = (
        db.Index("ix_gps_logs_delivery_recorded", "delivery_id", "recorded_at"),
        db.CheckConstraint("latitude >= -90 AND latitude <= 90", name="ck_gps_logs_latitude"),
        db.CheckConstraint("longitude >= -180 AND longitude <= 180", name="ck_gps_logs_longitude"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False)
    driver_id = db.Column(db.String(64), nullable=False)

    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    accuracy_m = db.Column(db.Float, nullable=True)
    speed_kmh = db.Column(db.Float, nullable=True)
    heading_deg = db.Column(db.Float, nullable=True)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False)

    delivery = db.relationship("Delivery", backref=db.backref("gps_logs", lazy=True, order_by="GpsLog.recorded_at"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "driver_id": self.driver_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy_m": self.accuracy_m,
            "speed_kmh": self.speed_kmh,
            "heading_deg": self.heading_deg,
            "recorded_at": to_utc_z(self.recorded_at),
        }
