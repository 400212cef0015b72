#!/usr/bin/env python3
"""
Smoke test for a running HealthInspect API.
Start the server first: healthinspect-api (or python -m healthinspect.api.app)
Then run this: python scripts/smoke_test_api.py
"""

import json
import os
from getpass import getpass

import requests

BASE_URL = os.getenv("HEALTHINSPECT_URL", "http://localhost:8000")


def banner(title):
    print("\n" + "=" * 50)
    print(f"CHECK: {title}")
    print("=" * 50)


def show(response, truncate=None):
    print(f"Status Code: {response.status_code}")
    data = response.json()
    text = json.dumps(data, indent=2)
    if truncate and len(text) > truncate:
        text = text[:truncate] + "\n... (truncated)"
    print(f"Response: {text}")
    return data


def check_health():
    banner("Health Check")
    response = requests.get(f"{BASE_URL}/health")
    show(response)
    return response.status_code == 200


def check_login_invalid():
    banner("Login with Invalid Credentials")
    response = requests.post(
        f"{BASE_URL}/api/auth/login",
        json={"email": "nobody@example.org", "password": "definitely-wrong"},
    )
    show(response)
    return response.status_code == 401


def check_login(email, password):
    banner("Login")
    response = requests.post(f"{BASE_URL}/api/auth/login", json={"email": email, "password": password})
    data = show(response, truncate=1500)
    if response.status_code == 200:
        return data.get("token"), data.get("permissions", {})
    return None, {}


def check_without_token():
    banner("Facilities Without Token")
    response = requests.get(f"{BASE_URL}/api/facilities")
    show(response)
    return response.status_code == 401


def check_get(token, path, title, expected=200):
    banner(title)
    response = requests.get(f"{BASE_URL}{path}", headers={"Authorization": f"Bearer {token}"})
    data = show(response, truncate=800)
    if response.status_code == 200 and "count" in data:
        print(f"Rows: {data['count']}")
    return response.status_code == expected


def check_logout(token):
    banner("Logout")
    response = requests.post(f"{BASE_URL}/api/auth/logout", headers={"Authorization": f"Bearer {token}"})
    show(response)
    return response.status_code == 200


def main():
    print("=" * 50)
    print("HealthInspect API Smoke Test")
    print("=" * 50)
    print(f"Base URL: {BASE_URL}")
    print("Make sure the API server is running!")
    print()

    email = input("Email: ").strip()
    password = getpass("Password: ")
    if not email or not password:
        print("ERROR: email and password are required")
        return

    results = {}
    try:
        results["Health Check"] = check_health()
        results["Login Invalid"] = check_login_invalid()
        results["Without Token"] = check_without_token()

        token, permissions = check_login(email, password)
        if token:
            results["Login Valid"] = True
            results["Profile"] = check_get(token, "/api/user/profile", "Get User Profile")
            results["Facilities"] = check_get(token, "/api/facilities", "List Facilities")
            results["Inspections"] = check_get(token, "/api/inspections", "List Inspections")
            results["Schedules"] = check_get(token, "/api/schedules", "List Schedules")

            # gated endpoints must answer 403 when the role lacks the capability
            for flag, path, title in (
                ("can_view_dashboard", "/api/dashboard", "Dashboard"),
                ("can_view_reports", "/api/reports/compliance", "Compliance Report"),
                ("can_view_users", "/api/users", "List Users"),
            ):
                expected = 200 if permissions.get(flag) else 403
                results[title] = check_get(token, path, title, expected=expected)

            results["Logout"] = check_logout(token)
        else:
            results["Login Valid"] = False
            print("\nERROR: Could not login. Remaining checks skipped.")

    except requests.RequestException as e:
        print(f"\n\nERROR: {e}")

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    passed = sum(1 for v in results.values() if v)
    for name, result in results.items():
        print(f"{'✓ PASS' if result else '✗ FAIL'}: {name}")
    print(f"\nTotal: {passed}/{len(results)} checks passed")
    print("=" * 50)


if __name__ == "__main__":
    main()
