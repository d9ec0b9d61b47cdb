from django.db import IntegrityError, transaction
from django.test import TestCase

from .models import AccreditationRequest, Area, Employee, Event, Provider, Zone


class EventModelTests(TestCase):
    def setUp(self):
        self.event = Event.objects.create(name="Expo")
        self.area = Area.objects.create(name="Logistics")
        self.provider = Provider.objects.create(name="Movers", area=self.area)
        self.employee = Employee.objects.create(provider=self.provider, first_name="Sara", last_name="Gil")

    def test_employee_full_name(self):
        self.assertEqual(self.employee.full_name, "Sara Gil")
        self.assertEqual(str(self.employee), "Sara Gil")

    def test_one_accreditation_request_per_employee_and_event(self):
        AccreditationRequest.objects.create(employee=self.employee, event=self.event)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                AccreditationRequest.objects.create(employee=self.employee, event=self.event)

    def test_zones_are_ordered_by_code(self):
        Zone.objects.create(code=5, name="Backstage")
        Zone.objects.create(code=2, name="Stage")
        self.assertEqual(list(Zone.objects.values_list("code", flat=True)), [2, 5])
        self.event.zones.set(Zone.objects.all())
        self.assertEqual(self.event.zones.count(), 2)
