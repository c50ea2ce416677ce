import os

import numpy as np
import pandas as pd

# Harare city centre; every generated point is scattered around it
CENTER_LAT = -17.824858
CENTER_LON = 31.053028

ORGANIZATION_TYPES = ["shelter", "community_kitchen", "food_bank", "religious", "other"]
CATEGORIES = ["vegetables", "fruits", "baked-goods", "dairy", "grains", "canned-goods", "prepared-meal"]
RESTRICTIONS = ["", "", "", "vegetarian", "halal", "vegan"]
VEHICLES = ["none", "bike", "car", "van", "truck"]
URGENCIES = ["normal", "high", "critical"]


def generate_mock_recipients(count=20):
    rows = []
    for index in range(count):
        preferred = np.random.choice(CATEGORIES, size=np.random.randint(1, 4), replace=False)
        rows.append({
            "recipient_id": f"rcp_{str(index + 1).zfill(3)}",
            "organization_name": f"Organization {index + 1}",
            "organization_type": np.random.choice(ORGANIZATION_TYPES),
            "capacity": np.random.randint(10, 120),
            "dietary_restrictions": np.random.choice(RESTRICTIONS),
            "preferred_categories": "|".join(preferred),
            "lat": np.round(CENTER_LAT + np.random.uniform(-0.08, 0.08), 6),
            "lon": np.round(CENTER_LON + np.random.uniform(-0.08, 0.08), 6),
            "verification_status": np.random.choice(["verified", "pending"], p=[0.85, 0.15]),
        })
    return pd.DataFrame(rows)


def generate_mock_volunteers(count=30):
    rows = []
    for index in range(count):
        # roughly one courier in ten has never shared a location
        located = np.random.random() > 0.1
        rows.append({
            "volunteer_id": f"vol_{str(index + 1).zfill(3)}",
            "name": f"Volunteer {index + 1}",
            "vehicle_type": np.random.choice(VEHICLES, p=[0.15, 0.3, 0.35, 0.15, 0.05]),
            "lat": np.round(CENTER_LAT + np.random.uniform(-0.075, 0.075), 6) if located else None,
            "lon": np.round(CENTER_LON + np.random.uniform(-0.075, 0.075), 6) if located else None,
            "is_available": bool(np.random.random() < 0.8),
        })
    return pd.DataFrame(rows)


def generate_mock_donations(count=50):
    rows = []
    for index in range(count):
        categories = np.random.choice(CATEGORIES, size=np.random.randint(1, 3), replace=False)
        rows.append({
            "donation_id": f"don_{str(index + 1).zfill(4)}",
            "donor_id": f"donor_{np.random.randint(1, 15)}",
            "description": f"Surplus {' and '.join(category.replace('-', ' ') for category in categories)}",
            "categories": "|".join(categories),
            "tags": "fresh" if np.random.random() < 0.5 else "",
            "urgency": np.random.choice(URGENCIES, p=[0.7, 0.2, 0.1]),
            "quantity_kg": np.round(np.random.uniform(1.0, 60.0), 1),
            "lat": np.round(CENTER_LAT + np.random.uniform(-0.05, 0.05), 6),
            "lon": np.round(CENTER_LON + np.random.uniform(-0.05, 0.05), 6),
        })
    return pd.DataFrame(rows)


def generate_mock_data(output_dir="sampledata", recipients=20, volunteers=30, donations=50):
    os.makedirs(output_dir, exist_ok=True)

    frames = {
        "recipients.csv": generate_mock_recipients(recipients),
        "volunteers.csv": generate_mock_volunteers(volunteers),
        "donations.csv": generate_mock_donations(donations),
    }
    for filename, frame in frames.items():
        frame.to_csv(os.path.join(output_dir, filename), index=False)
        print(f"Generated {len(frame)} rows into '{os.path.join(output_dir, filename)}'")

    print("\nDonations per urgency:")
    for urgency, count in frames["donations.csv"]["urgency"].value_counts().items():
        print(f"  {urgency}: {count}")


if __name__ == "__main__":
    generate_mock_data()
