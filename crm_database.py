# crm_database.py

from extensions import db
from utils.datetime_utils import naive_utc


def _empty_stats():
    return {
        'totalTargeted': 0,
        'totalSent': 0,
        'totalDelivered': 0,
        'totalFailed': 0,
        'totalOpened': 0,
        'totalClicked': 0,
        'totalReplied': 0,
        'totalConverted': 0,
        'conversionValue': 0,
    }


def _empty_rules():
    return {'combinator': 'and', 'rules': []}


def _iso(value):
    return value.isoformat() if value else None


# --- Contact Model (the store segments are evaluated against) ---
class Contact(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(200))
    email = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    tags = db.Column(db.JSON, default=list)
    lifecycle_stage = db.Column(db.String(50), nullable=True)  # 'lead', 'customer', 'churned', ...
    source = db.Column(db.String(50), nullable=True)
    custom_fields = db.Column(db.JSON, default=dict)
    ecommerce_data = db.Column(db.JSON, default=dict)  # totalOrders, totalSpent, lastOrderDate, ...
    created_at = db.Column(db.DateTime, default=naive_utc)
    updated_at = db.Column(db.DateTime, default=naive_utc, onupdate=naive_utc)
    last_contacted_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<Contact {self.id} {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'tags': self.tags or [],
            'lifecycleStage': self.lifecycle_stage,
            'source': self.source,
            'customFields': self.custom_fields or {},
            'ecommerceData': self.ecommerce_data or {},
            'createdAt': _iso(self.created_at),
            'lastContactedAt': _iso(self.last_contacted_at),
        }


# --- Segment Model ---
class Segment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(20), nullable=False, default='dynamic')  # 'static', 'dynamic'
    rules = db.Column(db.JSON, nullable=False, default=_empty_rules)

    # Cached membership; only authoritative for static segments
    contact_ids = db.Column(db.JSON, nullable=False, default=list)
    contact_count = db.Column(db.Integer, default=0)
    last_calculated_at = db.Column(db.DateTime, nullable=True)

    is_system = db.Column(db.Boolean, default=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=naive_utc)
    updated_at = db.Column(db.DateTime, default=naive_utc, onupdate=naive_utc)

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f'<Segment {self.id} {self.name} ({self.type})>'

    def to_dict(self, include_members=False):
        """Convert segment to dictionary for API responses"""
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'type': self.type,
            'rules': self.rules,
            'contactCount': self.contact_count or 0,
            'lastCalculatedAt': _iso(self.last_calculated_at),
            'isSystem': bool(self.is_system),
            'version': self.version,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if include_members:
            data['contactIds'] = list(self.contact_ids or [])
        return data


# --- Campaign Model ---
class Campaign(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(30), nullable=False, default='whatsapp_template')
    primary_channel = db.Column(db.String(20), nullable=False, default='whatsapp')
    status = db.Column(db.String(20), nullable=False, default='draft', index=True)

    content = db.Column(db.JSON, default=dict)  # templateName, templateVariables, emailSubject, emailBody, smsBody
    targeting = db.Column(db.JSON, default=dict)  # segmentIds, contactIds, excludeSegmentIds, excludeContactIds
    schedule = db.Column(db.JSON, nullable=True)  # type, scheduledAt, timezone
    throttle = db.Column(db.JSON, nullable=True)  # enabled, messagesPerMinute/Hour, sendingWindow
    stats = db.Column(db.JSON, nullable=False, default=_empty_stats)

    # A/B testing
    is_ab_test = db.Column(db.Boolean, default=False)
    ab_test_winner_metric = db.Column(db.String(30), nullable=True)
    ab_test_sample_size = db.Column(db.Integer, nullable=True)

    scheduled_at = db.Column(db.DateTime, nullable=True, index=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=naive_utc)
    updated_at = db.Column(db.DateTime, default=naive_utc, onupdate=naive_utc)

    # Relationships
    variants = db.relationship('CampaignVariant', backref='campaign', lazy=True,
                               cascade="all, delete-orphan", order_by='CampaignVariant.id')
    executions = db.relationship('CampaignExecution', backref='campaign', lazy=True,
                                 cascade="all, delete-orphan")

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f'<Campaign {self.id} {self.name} ({self.status})>'

    def to_dict(self):
        """Convert campaign, with its variants, to dictionary for API responses"""
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'type': self.type,
            'primaryChannel': self.primary_channel,
            'status': self.status,
            'content': self.content or {},
            'targeting': self.targeting or {},
            'schedule': self.schedule,
            'throttle': self.throttle,
            'stats': self.stats or _empty_stats(),
            'isAbTest': bool(self.is_ab_test),
            'abTestWinnerMetric': self.ab_test_winner_metric,
            'abTestSampleSize': self.ab_test_sample_size,
            'variants': [variant.to_dict() for variant in self.variants],
            'scheduledAt': _iso(self.scheduled_at),
            'startedAt': _iso(self.started_at),
            'completedAt': _iso(self.completed_at),
            'version': self.version,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


# --- CampaignVariant Model (A/B test arm) ---
class CampaignVariant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaign.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    content = db.Column(db.JSON, default=dict)
    percentage = db.Column(db.Float, nullable=False, default=0)
    stats = db.Column(db.JSON, nullable=False, default=_empty_stats)
    is_winner = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=naive_utc)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'content': self.content or {},
            'percentage': self.percentage,
            'stats': self.stats or _empty_stats(),
            'isWinner': bool(self.is_winner),
        }


# --- CampaignExecution Model (one delivery attempt per recipient) ---
class CampaignExecution(db.Model):
    __table_args__ = (
        db.UniqueConstraint('campaign_id', 'contact_id', name='uq_campaign_execution_contact'),
    )

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaign.id', ondelete='CASCADE'), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey('campaign_variant.id', ondelete='SET NULL'), nullable=True)
    contact_id = db.Column(db.Integer, nullable=False, index=True)
    channel = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    error_message = db.Column(db.Text, nullable=True)
    external_message_id = db.Column(db.String(200), nullable=True)

    queued_at = db.Column(db.DateTime, nullable=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    opened_at = db.Column(db.DateTime, nullable=True)
    clicked_at = db.Column(db.DateTime, nullable=True)
    replied_at = db.Column(db.DateTime, nullable=True)

    converted = db.Column(db.Boolean, default=False)
    conversion_value = db.Column(db.Numeric(precision=12, scale=2), nullable=True)
    conversion_order_id = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, default=naive_utc)
    updated_at = db.Column(db.DateTime, default=naive_utc, onupdate=naive_utc)

    def __repr__(self):
        return f'<CampaignExecution {self.id} campaign={self.campaign_id} contact={self.contact_id} {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'campaignId': self.campaign_id,
            'variantId': self.variant_id,
            'contactId': self.contact_id,
            'channel': self.channel,
            'status': self.status,
            'errorMessage': self.error_message,
            'externalMessageId': self.external_message_id,
            'queuedAt': _iso(self.queued_at),
            'sentAt': _iso(self.sent_at),
            'deliveredAt': _iso(self.delivered_at),
            'openedAt': _iso(self.opened_at),
            'clickedAt': _iso(self.clicked_at),
            'repliedAt': _iso(self.replied_at),
            'converted': bool(self.converted),
            'conversionValue': float(self.conversion_value) if self.conversion_value is not None else None,
            'conversionOrderId': self.conversion_order_id,
            'createdAt': _iso(self.created_at),
        }
