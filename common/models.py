# common/models.py
from django.db import models, transaction
from django.db.models import F


class SequenceCounter(models.Model):
    """
    Persistent counter behind every human-readable number.

    One row per numbering scope, keyed by a string such as
    ``appointment:DC01:2410`` or ``token:7:2024-10-19``. Incrementing happens
    with the row locked, so two concurrent writers in the same scope never
    read the same value.
    """

    scope = models.CharField(
        max_length=120,
        unique=True,
        help_text="Numbering scope key (entity:scope:period)"
    )
    value = models.PositiveIntegerField(
        default=0,
        help_text="Last value handed out in this scope"
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sequence_counters'
        ordering = ['scope']
        verbose_name = 'Sequence Counter'
        verbose_name_plural = 'Sequence Counters'

    def __str__(self):
        return f"{self.scope} = {self.value}"

    @classmethod
    def lock(cls, scope, seed=None):
        """
        Return the counter row for `scope`, locked until the surrounding
        transaction ends. A missing row is created with `seed()` as its
        starting value so numbering continues from records that already exist.
        """
        counter = cls.objects.select_for_update().filter(scope=scope).first()
        if counter is None:
            initial = seed() if seed else 0
            # Concurrent creators of the same scope race on the unique key;
            # the loser falls through to the locked read below.
            with transaction.atomic():
                cls.objects.get_or_create(scope=scope, defaults={'value': initial})
            counter = cls.objects.select_for_update().get(scope=scope)
        return counter

    @classmethod
    def next_value(cls, scope, seed=None):
        """Atomically increment the counter for `scope` and return the new value."""
        with transaction.atomic():
            counter = cls.lock(scope, seed=seed)
            cls.objects.filter(pk=counter.pk).update(value=F('value') + 1)
            counter.refresh_from_db(fields=['value'])
            return counter.value
