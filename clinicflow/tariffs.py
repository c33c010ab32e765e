# clinicflow/tariffs.py
# Price lists used to total a diagnosis. Amounts are whole rupees.
from typing import Iterable

TEST_COSTS = {
    "CBC Test": 400, "Dengue Test": 800, "Malaria Test": 700, "Typhoid Test": 600,
    "Blood Sugar Test": 300, "Liver Function Test": 900, "Kidney Function Test": 1000,
    "ECG": 500, "MRI Scan": 5000, "CT Scan": 4500, "X-Ray": 800, "Ultrasound": 1200,
}

DISEASE_COSTS = {
    "fever": 300, "cold": 250, "flu": 350, "pneumonia": 1200, "diabetes": 800,
    "hypertension": 700, "asthma": 600, "migraine": 500, "allergy": 400, "anemia": 750,
    "arthritis": 900, "bronchitis": 650, "chickenpox": 1000, "dengue": 1100, "malaria": 950,
    "typhoid": 1050, "covid-19": 1500,
}

_TEST_COSTS_CI = {name.lower(): cost for name, cost in TEST_COSTS.items()}


def price_of_disease(disease_name: str) -> int:
    return DISEASE_COSTS.get((disease_name or "").strip().lower(), 0)


def price_of_test(test_name: str) -> int:
    return _TEST_COSTS_CI.get((test_name or "").strip().lower(), 0)


def price_of_tests(test_names: Iterable[str]) -> int:
    return sum(price_of_test(t) for t in test_names)
