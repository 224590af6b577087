"""
Demo fleet: teaching hospitals and ambulances across Nigeria.

Usage:
    STORE_BACKEND=postgres DATABASE_URL=postgresql://... python -m ambulance_dispatch.seed
"""

import logging

from ambulance_dispatch.shared.types import Ambulance, EquipmentLevel, Hospital, Point

logger = logging.getLogger(__name__)

HOSPITALS = [
    {"name": "Lagos University Teaching Hospital (LUTH)", "lon": 3.3792, "lat": 6.4969,
     "capacity": 761, "services": ["trauma", "cardiac", "pediatric", "general"]},
    {"name": "National Hospital Abuja", "lon": 7.4951, "lat": 9.0579,
     "capacity": 500, "services": ["trauma", "cardiac", "general"]},
    {"name": "University College Hospital (UCH) Ibadan", "lon": 3.8964, "lat": 7.3878,
     "capacity": 850, "services": ["trauma", "cardiac", "pediatric", "general"]},
    {"name": "Aminu Kano Teaching Hospital", "lon": 8.5167, "lat": 11.9833,
     "capacity": 500, "services": ["general", "trauma", "pediatric"]},
    {"name": "University of Port Harcourt Teaching Hospital", "lon": 7.0219, "lat": 4.8906,
     "capacity": 650, "services": ["trauma", "cardiac", "general"]},
    {"name": "Obafemi Awolowo University Teaching Hospital, Ile-Ife", "lon": 4.56, "lat": 7.48,
     "capacity": 550, "services": ["trauma", "general", "pediatric"]},
    {"name": "University of Benin Teaching Hospital (UBTH)", "lon": 5.6257, "lat": 6.3381,
     "capacity": 600, "services": ["trauma", "cardiac", "general"]},
    {"name": "Ahmadu Bello University Teaching Hospital, Zaria", "lon": 7.7063, "lat": 11.0799,
     "capacity": 500, "services": ["general", "trauma", "cardiac"]},
    {"name": "Federal Medical Centre, Asaba", "lon": 6.7371, "lat": 6.1988,
     "capacity": 350, "services": ["general", "pediatric"]},
    {"name": "Nnamdi Azikiwe University Teaching Hospital, Nnewi", "lon": 6.9179, "lat": 6.0194,
     "capacity": 400, "services": ["trauma", "general", "pediatric"]},
    {"name": "Eko Hospital, Lagos", "lon": 3.4219, "lat": 6.4433,
     "capacity": 250, "services": ["cardiac", "general", "trauma"]},
    {"name": "Cedar Crest Hospital, Abuja", "lon": 7.4912, "lat": 9.082,
     "capacity": 200, "services": ["general", "cardiac"]},
]

AMBULANCES = [
    {"call_sign": "LASG-AMB-001", "lon": 3.3792, "lat": 6.5244, "equipment": EquipmentLevel.ADVANCED},  # Lagos
    {"call_sign": "LASG-AMB-002", "lon": 3.405, "lat": 6.4698, "equipment": EquipmentLevel.BASIC},  # Lagos Island
    {"call_sign": "LASG-AMB-003", "lon": 3.3515, "lat": 6.6018, "equipment": EquipmentLevel.CRITICAL_CARE},  # Ikeja
    {"call_sign": "FCT-AMB-001", "lon": 7.4906, "lat": 9.0579, "equipment": EquipmentLevel.ADVANCED},  # Abuja
    {"call_sign": "FCT-AMB-002", "lon": 7.5243, "lat": 9.082, "equipment": EquipmentLevel.BASIC},  # Abuja
    {"call_sign": "PH-AMB-001", "lon": 7.0219, "lat": 4.8156, "equipment": EquipmentLevel.ADVANCED},  # Port Harcourt
    {"call_sign": "KANO-AMB-001", "lon": 8.5919, "lat": 12.0022, "equipment": EquipmentLevel.BASIC},  # Kano
    {"call_sign": "IBD-AMB-001", "lon": 3.947, "lat": 7.3775, "equipment": EquipmentLevel.ADVANCED},  # Ibadan
    {"call_sign": "BENUE-AMB-001", "lon": 5.6257, "lat": 6.335, "equipment": EquipmentLevel.BASIC},  # Benin City
    {"call_sign": "ENUGU-AMB-001", "lon": 7.4912, "lat": 6.4411, "equipment": EquipmentLevel.ADVANCED},  # Enugu
]


def seed_demo_data(store) -> None:
    """Load the demo hospitals and ambulances into a store. Ids start at 1."""
    for hospital_id, h in enumerate(HOSPITALS, start=1):
        store.save_hospital(Hospital(
            id=hospital_id,
            name=h["name"],
            location=Point(longitude=h["lon"], latitude=h["lat"]),
            capacity=h["capacity"],
            services=h["services"],
        ))

    for ambulance_id, a in enumerate(AMBULANCES, start=1):
        store.save_ambulance(Ambulance(
            id=ambulance_id,
            call_sign=a["call_sign"],
            location=Point(longitude=a["lon"], latitude=a["lat"]),
            equipment_level=a["equipment"],
        ))

    logger.info(f"Seeded {len(HOSPITALS)} hospitals and {len(AMBULANCES)} ambulances")


def main():
    from ambulance_dispatch.services.dispatch_api.container import build_store

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    store = build_store()
    if hasattr(store, "create_schema"):
        store.create_schema()
    seed_demo_data(store)


if __name__ == "__main__":
    main()
