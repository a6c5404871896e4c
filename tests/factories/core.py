import factory

from core import models as core_models


class TenantFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = core_models.Tenant

    name = factory.Sequence(lambda n: f"Tenant {n}")
    slug = factory.Sequence(lambda n: f"tenant-{n}")
    is_active = True


class LocationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = core_models.Location

    tenant = factory.SubFactory(TenantFactory)
    name = factory.Sequence(lambda n: f"Bandra Kitchen {n}")
    address = "12 Hill Road, Mumbai"
    state_code = "MH"
    gstin = "27AAAPL1234C1Z5"
    invoice_prefix = "BDK"
    is_active = True
