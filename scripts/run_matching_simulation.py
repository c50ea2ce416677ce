import logging
import os
import random
import time
from typing import List

import pandas as pd

from dispatch.dispatcher import Dispatcher
from dispatch.notifications import LoggingNotifier
from donations.models import (
    Donation,
    DonationStatus,
    OrganizationType,
    Quantity,
    RecipientCandidate,
    Urgency,
    VerificationStatus,
)
from donations.store import InMemoryStore
from matching import embeddings
from matching.embeddings import HuggingFaceEmbeddingClient
from routing import osrm_client
from routing.osrm_client import OSRMClient
from routing.traffic_service import GeoTrafficOracle
from volunteers.models import Volunteer

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def read_sample(filename) -> pd.DataFrame:
    # keep_default_na=False so empty list columns come back as "" instead of NaN
    return pd.read_csv(os.path.join(BASE_DIR, "sampledata", filename), keep_default_na=False)


def split_list(value) -> List[str]:
    return [item for item in str(value).split("|") if item]


def optional_float(value):
    return float(value) if value != "" else None


def load_recipients() -> List[RecipientCandidate]:
    recipients = []
    for row in read_sample("recipients.csv").to_dict("records"):
        lat, lon = optional_float(row["lat"]), optional_float(row["lon"])
        recipients.append(RecipientCandidate(
            id=row["recipient_id"],
            organization_name=row["organization_name"],
            organization_type=OrganizationType(row["organization_type"]),
            capacity=int(row["capacity"]) if row["capacity"] != "" else None,
            dietary_restrictions=tuple(split_list(row["dietary_restrictions"])),
            preferred_categories=tuple(split_list(row["preferred_categories"])),
            location=(lat, lon) if lat is not None and lon is not None else None,
            verification_status=VerificationStatus(row["verification_status"]),
        ))
    return recipients


def load_volunteers() -> List[Volunteer]:
    volunteers = []
    for row in read_sample("volunteers.csv").to_dict("records"):
        volunteers.append(Volunteer.new(
            row["volunteer_id"],
            optional_float(row["lat"]),
            optional_float(row["lon"]),
            vehicle_type=row["vehicle_type"],
            is_available=str(row["is_available"]).lower() == "true",
            name=row["name"],
        ))
    return volunteers


def load_donations() -> List[Donation]:
    donations = []
    for row in read_sample("donations.csv").to_dict("records"):
        donations.append(Donation(
            id=row["donation_id"],
            donor_id=row["donor_id"],
            location=(float(row["lat"]), float(row["lon"])),
            status=DonationStatus.PROCESSING,
            urgency=Urgency(row["urgency"]),
            description=row["description"],
            categories=split_list(row["categories"]),
            tags=split_list(row["tags"]),
            quantity=Quantity(amount=float(row["quantity_kg"]), unit="kg"),
        ))
    return donations


def build_dispatcher(store) -> Dispatcher:
    # OSRM and embeddings are optional; without them the engine degrades to
    # fallback distances and fallback scoring
    client = OSRMClient() if osrm_client.BASE_URL else None
    embedder = HuggingFaceEmbeddingClient() if embeddings.HUGGINGFACE_TOKEN else None
    print(f"OSRM: {'on' if client else 'off'} | embeddings: {'on' if embedder else 'off'}")

    return Dispatcher(
        store,
        embedder=embedder,
        oracle=GeoTrafficOracle(osrm_client=client),
        notifier=LoggingNotifier(),
        rng=random.Random(42),
    )


def run_simulation(acceptance_probability=0.9):
    print("=== STARTING END-TO-END MATCHING SIMULATION ===")

    store = InMemoryStore()
    for recipient in load_recipients():
        store.add_recipient(recipient)
    for volunteer in load_volunteers():
        store.add_volunteer(volunteer)
    donations = load_donations()
    for donation in donations:
        store.add_donation(donation)
    print(f"Loaded {len(donations)} donations, {len(store.find_recipients())} verified recipients, "
          f"{len(store.find_volunteers())} volunteers.\n")

    dispatcher = build_dispatcher(store)
    start_time = time.time()

    # 1. Matching
    print("Running matching...")
    matches = {donation.id: dispatcher.activate_donation(donation.id) for donation in donations}

    # 2. Recipients respond; the best offer accepts with some probability
    for donation_id, future in matches.items():
        result = future.result()
        if not result.matched:
            print(f"[NO MATCH] {donation_id}")
            continue

        ranking = ", ".join(f"{offer.recipient_id}={offer.total_score:.2f}" for offer in result.offers)
        print(f"{donation_id} ({result.method.value}) -> {ranking}")

        if random.random() < acceptance_probability:
            dispatcher.accept_donation(donation_id, result.offers[0].recipient_id)
        else:
            dispatcher.decline_donation(donation_id, result.offers[0].recipient_id, "no storage space")

    # 3. Courier assignment and route refresh run in the background
    dispatcher.drain(timeout=120)
    print(f"\nPipelines finished in {time.time() - start_time:.2f}s.\n")

    rows = []
    for donation in donations:
        stored = store.get_donation(donation.id)
        tasks = store.find_tasks(donation_id=donation.id)
        task = tasks[0] if tasks else None
        attempt = dispatcher.controller.attempt_for(task.id) if task else None
        rows.append({
            "donation_id": stored.id,
            "status": stored.status.value,
            "accepted_by": stored.accepted_by or "",
            "volunteer": stored.assigned_volunteer or "",
            "assignment_state": attempt.state.value if attempt else "",
            "route_km": round(task.optimized_route.total_distance_m / 1000, 1) if task and task.optimized_route else "",
        })
    dispatcher.shutdown(wait=False)

    results = pd.DataFrame(rows)
    output_path = os.path.join(BASE_DIR, "simulation_results.csv")
    results.to_csv(output_path, index=False)

    print("=== SIMULATION COMPLETE ===")
    print(results.to_string(index=False))
    print(f"\nScheduled: {(results['status'] == DonationStatus.SCHEDULED.value).sum()} / {len(results)}")
    print(f"Results written to '{output_path}'.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    run_simulation()
