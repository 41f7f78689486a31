"""Ledger Analytics Demo with a synthetic order ledger.

This example walks through a full analytics run:
1. Generate a seeded synthetic ledger (orders, products, customers)
2. Build every result table with build_report
3. Print the headline KPIs and monthly growth
4. Show the channel breakdown and the top of the LTV ranking
5. Render the cohort retention triangle with the pandas adapters
"""

import random
from datetime import date, datetime, timedelta

import pandas as pd

from ledger_analytics import ReportConfig, build_report
from ledger_analytics.analyses.breakdown import BreakdownDimension
from ledger_analytics.foundation.periods import Granularity
from ledger_analytics.pandas import cohort_matrix_to_dense, time_series_to_dataframe

CHANNELS = ["Website", "App", "Marketplace"]
PAYMENT_METHODS = ["Card", "Wallet", "COD"]
STATUSES = ["Completed"] * 8 + ["Cancelled", "Returned"]
CITIES = [("CA", "Los Angeles"), ("CA", "San Diego"), ("TX", "Austin"), ("NY", "New York")]
PRODUCTS = [
    ("P1", "Desk Lamp", "Office", "Lighting", 18.0, 35.0),
    ("P2", "Notebook", "Office", "Paper", 1.5, 4.0),
    ("P3", "Kettle", "Home", "Kitchen", 12.0, 29.0),
    ("P4", "Throw Pillow", "Home", "Decor", 6.0, 15.0),
]


def generate_ledger(total_customers=150, start=date(2023, 1, 1), months=18, seed=42):
    """Generate order, product and customer rows for the demo.

    Returns
    -------
    tuple[list[dict], list[dict], list[dict]]
        Order-line rows, product rows and customer rows.
    """
    rng = random.Random(seed)
    products = [
        {
            "product_id": pid,
            "product_name": name,
            "category": category,
            "sub_category": sub_category,
            "cost_price": cost,
        }
        for pid, name, category, sub_category, cost, _ in PRODUCTS
    ]
    customers = [
        {
            "customer_id": f"C{idx:04d}",
            "customer_name": f"Customer {idx}",
            "customer_segment": rng.choice(["Consumer", "Corporate", "Home Office"]),
        }
        for idx in range(total_customers)
    ]

    span_days = months * 30
    rows = []
    order_seq = 0
    for customer in customers:
        first_day = rng.randrange(span_days)
        for _ in range(rng.choice([1, 1, 1, 2, 3, 5])):
            order_seq += 1
            ordered_at = datetime.combine(start, datetime.min.time()) + timedelta(
                days=first_day + rng.randrange(span_days - first_day),
                hours=rng.randrange(24),
            )
            state, city = rng.choice(CITIES)
            status = rng.choice(STATUSES)
            channel = rng.choice(CHANNELS)
            payment = rng.choice(PAYMENT_METHODS)
            for pid, _, _, _, _, price in rng.sample(PRODUCTS, rng.randint(1, 2)):
                row = {
                    "order_id": f"O{order_seq:06d}",
                    "order_date": ordered_at.isoformat(),
                    "customer_id": customer["customer_id"],
                    "product_id": pid,
                    "quantity": rng.randint(1, 3),
                    "unit_price": price,
                    "shipping_amount": 4.99,
                    "order_status": status,
                    "channel": channel,
                    "payment_method": payment,
                    "state": state,
                    "city": city,
                }
                # Roughly one line in five arrives without profit
                if rng.random() > 0.2:
                    row["profit_amount"] = round(price * 0.3 * row["quantity"], 2)
                rows.append(row)
    return rows, products, customers


def main():
    """Demonstrate a full ledger analytics run on synthetic data."""
    print("=" * 80)
    print("Ledger Analytics Demo with Synthetic Order Data")
    print("=" * 80)

    # Step 1: Generate synthetic data
    print("\n📊 Step 1: Generating synthetic ledger...")
    rows, products, customers = generate_ledger()
    rows.append({"order_id": "BAD1", "order_date": "not a date", "customer_id": "C0000"})
    print(f"✓ Generated {len(rows):,} order lines for {len(customers)} customers")

    # Step 2: Build the report
    print("\n📈 Step 2: Building the report...")
    config = ReportConfig(
        as_of=date(2024, 7, 1),
        granularities=(Granularity.MONTH, Granularity.QUARTER),
        breakdown_limit=5,
        ltv_limit=10,
    )
    report = build_report(rows, products, customers, config)
    print(
        f"✓ Accepted {report.normalization.accepted:,} lines, "
        f"rejected {report.normalization.rejected} "
        f"{report.normalization.rejection_counts()}"
    )

    # Step 3: Headline KPIs
    kpis = report.kpi_summary
    print("\n💰 Step 3: Headline KPIs (completed orders)")
    print(f"  Orders:          {kpis.total_orders:,}")
    print(f"  Sales:           ${kpis.total_sales:,.2f}")
    print(f"  Profit:          ${kpis.total_profit:,.2f} ({kpis.unknown_profit_rows} unknown rows)")
    print(f"  Margin:          {kpis.profit_margin_pct}%")
    print(f"  AOV:             ${kpis.average_order_value:,.2f}")
    print(f"  Cancel rate:     {report.outcome_rates.cancel_rate_pct}%")
    print(f"  Return rate:     {report.outcome_rates.return_rate_pct}%")

    monthly = time_series_to_dataframe(report.time_series[Granularity.MONTH])
    print("\n  Last six months:")
    print(monthly[["period_label", "sales", "orders", "pct_change"]].tail(6).to_string(index=False))

    # Step 4: Breakdown and lifetime value
    print("\n🧭 Step 4: Sales by channel")
    for row in report.breakdown[BreakdownDimension.CHANNEL]:
        print(f"  {row.label:<12} ${row.sales:>12,.2f}  {row.pct_of_total_sales:>6}%  {row.orders} orders")

    print("\n🏆 Top customers by lifetime value:")
    for row in report.ltv_ranking[:5]:
        print(
            f"  #{row.rank} {row.customer_id}  ${row.lifetime_value:,.2f} "
            f"over {row.orders} orders ({row.customer_age_days} days)"
        )
    repeat = report.repeat_rate
    print(f"\n  Repeat customers: {repeat.repeat_customers}/{repeat.total_customers} ({repeat.repeat_rate_pct}%)")

    # Step 5: Cohort retention triangle
    print("\n📅 Step 5: Cohort retention (% active by months since first order)")
    triangle = cohort_matrix_to_dense(report.cohort_matrix, value="retention_pct")
    with pd.option_context("display.width", 160, "display.max_columns", 8):
        print(triangle.iloc[:6, :8])

    print("\n" + "=" * 80)
    print("✓ Demo complete")
    print("=" * 80)


if __name__ == "__main__":
    main()
