"""
Tests for the analytics queries over the reference store (see conftest.py).
"""
from dataclasses import replace
from datetime import date

import pandas as pd
import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import AS_OF, predictions_frame, seed_store
from customer_intel.analytics import QUERIES, AnalyticsEngine
from customer_intel.data.data_loader import DataLoader
from customer_intel.data.store import Order
from customer_intel.exceptions import InvalidParameterError, StaleSnapshotError
from customer_intel.features import FeatureBuilder
from customer_intel.models.evaluator import metrics_from_confusion
from customer_intel.models.prediction_store import PredictionStore


class InterleavingLoader(DataLoader):
    """Runs a callback right after the feature table has been read."""

    def __init__(self, config, after_features):
        super().__init__(config)
        self.after_features = after_features

    def load_features(self, conn):
        features = super().load_features(conn)
        self.after_features()
        return features


@pytest.fixture
def analytics(engine, config):
    return AnalyticsEngine(engine, config)


@pytest.fixture
def snapshot(scored_db, analytics):
    return analytics.load_snapshot(AS_OF)


def _rows(df, key):
    return df.set_index(key).to_dict(orient="index")


# ────────────────────────────────────────────
# SNAPSHOT
# ────────────────────────────────────────────


class TestSnapshot:

    def test_loads_everything_together(self, snapshot):
        assert len(snapshot.tables.customers) == 6
        assert len(snapshot.tables.orders) == 9
        assert len(snapshot.features) == 6
        assert len(snapshot.predictions) == 6
        assert snapshot.feature_generation == 1
        assert snapshot.as_of == AS_OF
        assert not snapshot.is_stale

    def test_empty_store(self, db, analytics):
        snap = analytics.load_snapshot(AS_OF)
        assert snap.feature_generation is None
        assert snap.prediction_generations == []
        assert analytics.top_customers(snapshot=snap).empty
        assert analytics.revenue_at_risk(snapshot=snap)["percentage_at_risk"] is None

    def test_run_dispatches_by_name(self, analytics, snapshot):
        assert len(QUERIES) == 18
        pd.testing.assert_frame_equal(
            analytics.run("revenue_by_city", snapshot=snapshot),
            analytics.revenue_by_city(snapshot=snapshot),
        )
        with pytest.raises(InvalidParameterError):
            analytics.run("drop_tables", snapshot=snapshot)


# ────────────────────────────────────────────
# REVENUE AND SEGMENTATION
# ────────────────────────────────────────────


class TestTopCustomers:

    def test_default_fraction(self, analytics, snapshot):
        df = analytics.top_customers(snapshot=snapshot)
        assert df["customer_id"].tolist() == [1]
        assert df.iloc[0]["total_spent"] == 100000.0
        assert df.iloc[0]["avg_order_value"] == 50000.0

    def test_wider_fraction(self, analytics, snapshot):
        df = analytics.top_customers(fraction=0.25, snapshot=snapshot)
        assert df["customer_id"].tolist() == [1, 3]
        assert df["pct_rank"].tolist() == [0.0, 0.25]

    def test_hundred_distinct_spends(self, db, analytics):
        customers = [(i, f"C{i}", "Male", 30, "Pune", date(2023, 1, 1)) for i in range(1, 101)]
        orders = [(i, i, date(2024, 1, 1), "UPI", float(i * 10)) for i in range(1, 101)]
        seed_store(db, customers=customers, orders=orders, products=[], order_items=[])

        df = analytics.top_customers(0.10, snapshot=analytics.load_snapshot(AS_OF))
        assert df["customer_id"].tolist() == list(range(100, 90, -1))

    def test_ties_share_percentile(self, db, analytics):
        customers = [(i, f"C{i}", "Female", 30, "Pune", date(2023, 1, 1)) for i in range(1, 12)]
        values = [900.0, 800.0, 800.0] + [10.0 * k for k in range(1, 9)]
        orders = [(i, i, date(2024, 1, 1), "UPI", values[i - 1]) for i in range(1, 12)]
        seed_store(db, customers=customers, orders=orders, products=[], order_items=[])

        df = analytics.top_customers(0.10, snapshot=analytics.load_snapshot(AS_OF))
        assert df["total_spent"].tolist() == [900.0, 800.0, 800.0]
        assert df["customer_id"].tolist() == [1, 2, 3]

    @pytest.mark.parametrize("fraction", [-0.1, 1.5, "ten"])
    def test_rejects_bad_fraction(self, analytics, snapshot, fraction):
        with pytest.raises(InvalidParameterError):
            analytics.top_customers(fraction, snapshot=snapshot)


class TestRevenueByCity:

    def test_outer_join_counts_customers_without_orders(self, analytics, snapshot):
        df = analytics.revenue_by_city(snapshot=snapshot)
        assert df["city"].tolist() == ["Mumbai", "Pune", "Delhi"]

        delhi = _rows(df, "city")["Delhi"]
        assert delhi["total_customers"] == 2
        assert delhi["total_orders"] == 1
        assert delhi["total_revenue"] == 1000.0
        assert delhi["revenue_per_customer"] == 500.0
        assert delhi["orders_per_customer"] == 0.5

    def test_city_without_orders_has_no_average(self, db, analytics):
        seed_store(
            db,
            customers=[(1, "Solo", "Male", 30, "Goa", date(2023, 1, 1))],
            orders=[], products=[], order_items=[],
        )
        df = analytics.revenue_by_city(snapshot=analytics.load_snapshot(AS_OF))
        goa = _rows(df, "city")["Goa"]
        assert goa["total_revenue"] == 0.0
        assert goa["avg_order_value"] is None
        assert goa["revenue_per_customer"] == 0.0


class TestInactiveCustomers:

    def test_reference_scenarios(self, analytics, snapshot):
        df = analytics.inactive_customers(90, snapshot=snapshot)
        assert df["customer_id"].tolist() == [2, 4, 6]

        dev = _rows(df, "customer_id")[6]
        assert dev["days_inactive"] == 120
        assert dev["lifetime_value"] == 5000.0
        assert dev["total_orders"] == 1

    def test_recent_signup_without_orders_is_not_inactive(self, analytics, snapshot):
        df = analytics.inactive_customers(90, snapshot=snapshot)
        assert 5 not in df["customer_id"].tolist()

    def test_zero_order_customer_anchored_on_signup(self, analytics, snapshot):
        df = analytics.inactive_customers(5, snapshot=snapshot)
        zoya = _rows(df, "customer_id")[5]
        assert zoya["days_inactive"] == 10
        assert zoya["total_orders"] == 0
        assert zoya["lifetime_value"] == 0.0
        assert zoya["last_order_date"] == pd.Timestamp("2024-06-20")

    def test_sorted_by_inactivity(self, analytics, snapshot):
        df = analytics.inactive_customers(0, snapshot=snapshot)
        assert df["days_inactive"].is_monotonic_decreasing

    def test_default_threshold_from_config(self, analytics, snapshot):
        pd.testing.assert_frame_equal(
            analytics.inactive_customers(snapshot=snapshot),
            analytics.inactive_customers(90, snapshot=snapshot),
        )

    def test_rejects_negative_threshold(self, analytics, snapshot):
        with pytest.raises(InvalidParameterError):
            analytics.inactive_customers(-1, snapshot=snapshot)


class TestOrderCountSegments:

    def test_all_segments_reported(self, analytics, snapshot):
        df = analytics.order_count_segments(snapshot=snapshot)
        assert df["customer_segment"].tolist() == [
            "One-time", "Occasional (2-5)", "Regular (6-10)", "Loyal (11+)"
        ]
        assert df["customers"].tolist() == [2, 3, 0, 0]
        assert df.loc[1, "avg_orders"] == 2.33
        assert df.loc[2, "avg_orders"] is None

    def test_counts_and_percentages_sum(self, analytics, snapshot):
        df = analytics.order_count_segments(snapshot=snapshot)
        assert df["customers"].sum() == 5
        assert df["percentage"].sum() == pytest.approx(100.0, abs=0.01)

    def test_thirds_sum_to_hundred(self, db, analytics):
        customers = [(i, f"C{i}", "Male", 30, "Pune", date(2023, 1, 1)) for i in range(1, 4)]
        orders = [(1, 1, date(2024, 1, 1), "UPI", 10.0)]
        orders += [(2 + k, 2, date(2024, 1, 1), "UPI", 10.0) for k in range(3)]
        orders += [(5 + k, 3, date(2024, 1, 1), "UPI", 10.0) for k in range(7)]
        seed_store(db, customers=customers, orders=orders, products=[], order_items=[])

        df = analytics.order_count_segments(snapshot=analytics.load_snapshot(AS_OF))
        assert df["customers"].tolist() == [1, 1, 1, 0]
        assert df["percentage"].sum() == pytest.approx(100.0, abs=0.01)

    def test_no_orders(self, db, analytics):
        df = analytics.order_count_segments(snapshot=analytics.load_snapshot(AS_OF))
        assert len(df) == 4
        assert df["customers"].sum() == 0
        assert df["percentage"].isna().all()


class TestMonthlyRevenueTrend:

    def test_reference_months(self, analytics, snapshot):
        df = analytics.monthly_revenue_trend(snapshot=snapshot)
        assert df["month"].tolist() == [
            "2023-12", "2024-01", "2024-02", "2024-03", "2024-04", "2024-05", "2024-06"
        ]
        assert df.loc[0, "mom_growth_pct"] is None
        assert df.loc[1, "monthly_revenue"] == 1700.0
        assert df.loc[1, "mom_growth_pct"] == 112.5
        assert df.loc[0, "month_label"] == "Dec 2023"

    def test_growth_between_two_months(self, db, analytics):
        customers = [(1, "A", "Male", 30, "Pune", date(2023, 1, 1))]
        orders = [
            (1, 1, date(2024, 1, 10), "UPI", 600.0),
            (2, 1, date(2024, 1, 20), "UPI", 400.0),
            (3, 1, date(2024, 2, 5), "Card", 1500.0),
        ]
        seed_store(db, customers=customers, orders=orders, products=[], order_items=[])

        df = analytics.monthly_revenue_trend(snapshot=analytics.load_snapshot(AS_OF))
        assert df["monthly_revenue"].tolist() == [1000.0, 1500.0]
        assert df["avg_order_value"].tolist() == [500.0, 1500.0]
        assert df["mom_growth_pct"].tolist() == [None, 50.0]

    def test_no_orders(self, db, analytics):
        assert analytics.monthly_revenue_trend(snapshot=analytics.load_snapshot(AS_OF)).empty


class TestProducts:

    def test_top_products(self, analytics, snapshot):
        df = analytics.top_products(snapshot=snapshot)
        assert df["product_name"].tolist() == ["Phone", "Laptop", "T-Shirt", "Rice"]

        phone = df.iloc[0]
        assert phone["total_units_sold"] == 4
        assert phone["product_revenue"] == 80000.0
        assert phone["number_of_orders"] == 3
        assert phone["avg_quantity_per_order"] == 1.33

    def test_limit(self, analytics, snapshot):
        assert len(analytics.top_products(2, snapshot=snapshot)) == 2
        with pytest.raises(InvalidParameterError):
            analytics.top_products(0, snapshot=snapshot)

    def test_revenue_by_category(self, analytics, snapshot):
        df = analytics.revenue_by_category(snapshot=snapshot)
        assert df["category"].tolist() == ["Electronics", "Fashion", "Grocery"]

        electronics = _rows(df, "category")["Electronics"]
        assert electronics["products_in_category"] == 2
        assert electronics["total_units_sold"] == 5
        assert electronics["category_revenue"] == 130000.0
        assert electronics["avg_revenue_per_unit"] == 26000.0
        assert electronics["number_of_orders"] == 4
        assert electronics["total_customers"] == 2
        assert electronics["revenue_per_customer"] == 65000.0

        fashion = _rows(df, "category")["Fashion"]
        assert fashion["total_units_sold"] == 17
        assert fashion["total_customers"] == 4


class TestCustomerValue:

    def test_lifetime_value(self, analytics, snapshot):
        df = analytics.customer_lifetime_value(snapshot=snapshot)
        assert df["customer_id"].tolist() == [1, 3, 6, 4, 2]

        rows = _rows(df, "customer_id")
        assert rows[1]["lifetime_value"] == 100000.0
        assert rows[1]["days_since_last_order"] == 15
        assert rows[1]["estimated_monthly_value"] == pytest.approx(83333.33)

    def test_single_day_customers_have_no_run_rate(self, analytics, snapshot):
        rows = _rows(analytics.customer_lifetime_value(snapshot=snapshot), "customer_id")
        assert rows[2]["estimated_monthly_value"] is None
        assert rows[6]["estimated_monthly_value"] is None

    def test_revenue_ranking(self, analytics, snapshot):
        df = analytics.revenue_ranking(snapshot=snapshot)
        assert df["customer_id"].tolist() == [1, 3, 6, 4, 2]
        assert df["revenue_rank"].tolist() == [1, 2, 3, 4, 5]
        assert df["decile_group"].tolist() == [1, 2, 3, 4, 5]

    def test_ranking_ties(self, db, analytics):
        customers = [(i, f"C{i}", "Male", 30, "Pune", date(2023, 1, 1)) for i in range(1, 4)]
        orders = [
            (1, 2, date(2024, 1, 1), "UPI", 100.0),
            (2, 1, date(2024, 1, 1), "UPI", 100.0),
            (3, 3, date(2024, 1, 1), "UPI", 90.0),
        ]
        seed_store(db, customers=customers, orders=orders, products=[], order_items=[])

        df = analytics.revenue_ranking(snapshot=analytics.load_snapshot(AS_OF))
        assert df["customer_id"].tolist() == [1, 2, 3]
        assert df["revenue_rank"].tolist() == [1, 1, 2]

    def test_ranking_limit(self, analytics, snapshot):
        df = analytics.revenue_ranking(limit=2, snapshot=snapshot)
        assert df["customer_id"].tolist() == [1, 3]


class TestRollups:

    def test_payment_methods(self, analytics, snapshot):
        df = analytics.revenue_by_payment_method(snapshot=snapshot)
        assert df["payment_method"].tolist() == ["UPI", "Card", "COD", "NetBanking"]

        upi = _rows(df, "payment_method")["UPI"]
        assert upi["total_orders"] == 3
        assert upi["total_revenue"] == 85700.0
        assert upi["unique_customers"] == 3
        assert upi["pct_of_orders"] == 33.33

        assert df["pct_of_revenue"].sum() == pytest.approx(100.0, abs=0.05)

    def test_cohort_retention(self, analytics, snapshot):
        df = analytics.cohort_retention(snapshot=snapshot)
        assert df["cohort_month"].tolist() == ["2024-06", "2023-12", "2023-03", "2023-02", "2023-01"]

        rows = _rows(df, "cohort_month")
        assert rows["2023-01"]["cohort_size"] == 2
        assert rows["2023-01"]["activation_rate_pct"] == 100.0
        assert rows["2024-06"]["active_customers"] == 0
        assert rows["2024-06"]["activation_rate_pct"] == 0.0
        assert df["activation_rate_pct"].between(0, 100).all()

    def test_demographics(self, analytics, snapshot):
        df = analytics.revenue_by_demographic(snapshot=snapshot)
        rows = {(r["gender"], r["age_group"]): r for r in df.to_dict(orient="records")}

        assert rows[("Male", "26-35")]["customer_count"] == 2
        assert rows[("Male", "26-35")]["total_revenue"] == 6000.0

        senior = rows[("Female", "56+")]
        assert senior["customer_count"] == 1
        assert senior["total_orders"] == 0
        assert senior["avg_order_value"] is None
        assert senior["avg_orders_per_customer"] == 0.0

        assert df["gender"].tolist() == sorted(df["gender"].tolist())


# ────────────────────────────────────────────
# CHURN PREDICTIONS
# ────────────────────────────────────────────


class TestPredictionQueries:

    def test_prediction_summary(self, analytics, snapshot):
        df = analytics.prediction_summary(snapshot=snapshot)
        assert df["customer_count"].tolist() == [2, 4]
        assert df["percentage"].tolist() == [33.33, 66.67]
        assert df["prediction_label"].tolist() == ["Active/Retained", "Likely to Churn"]

    def test_high_risk_customers(self, analytics, snapshot):
        df = analytics.high_risk_customers(snapshot=snapshot)
        assert df["customer_id"].tolist() == [2, 3, 4, 6]
        assert df["risk_level"].tolist() == ["Critical Risk", "High Risk", "High Risk", "Medium Risk"]

    def test_churn_risk_by_city(self, analytics, snapshot):
        df = analytics.churn_risk_by_city(snapshot=snapshot)
        assert df["city"].tolist() == ["Pune", "Delhi", "Mumbai"]

        pune = _rows(df, "city")["Pune"]
        assert pune["churn_rate_pct"] == 100.0
        assert pune["avg_value_at_risk"] == 3500.0

    def test_model_validation_has_all_cells(self, analytics, snapshot):
        df = analytics.model_validation(snapshot=snapshot)
        cells = {(r["actual_churn"], r["predicted_churn"]): r["customer_count"] for r in df.to_dict("records")}
        assert cells == {(False, False): 2, (False, True): 1, (True, False): 0, (True, True): 3}
        assert df["percentage"].sum() == pytest.approx(100.0, abs=0.02)

        metrics = metrics_from_confusion(df)
        assert metrics["precision"] == 0.75
        assert metrics["recall"] == 1.0

    def test_revenue_at_risk(self, analytics, snapshot):
        result = analytics.revenue_at_risk(snapshot=snapshot)
        assert result["total_revenue"] == 163000.0
        assert result["revenue_at_risk"] == 63000.0
        assert result["customers_at_risk"] == 4
        assert result["percentage_at_risk"] == 38.65

    def test_new_churner_increases_revenue_at_risk(self, scored_db, published, analytics):
        before = analytics.revenue_at_risk(snapshot=analytics.load_snapshot(AS_OF))

        predictions = predictions_frame({1: (True, 0.9)})
        PredictionStore().upsert_predictions(scored_db, predictions, published.generation)

        after = analytics.revenue_at_risk(snapshot=analytics.load_snapshot(AS_OF))
        assert after["revenue_at_risk"] > before["revenue_at_risk"]
        assert after["percentage_at_risk"] > before["percentage_at_risk"]

    def test_retention_priority_list(self, analytics, snapshot):
        df = analytics.retention_priority_list(snapshot=snapshot)
        assert df["customer_id"].tolist() == [3, 6, 4, 2]
        assert df["campaign_priority"].tolist() == [
            "Priority 1 - Immediate Action",
            "Priority 4 - Monitor",
            "Priority 4 - Monitor",
            "Priority 4 - Monitor",
        ]
        assert df.iloc[0]["churn_risk_pct"] == 75.0

    def test_priority_thresholds_are_strict(self, analytics, scored_db, published):
        # Exactly 0.7 does not exceed the first tier's floor
        PredictionStore().upsert_predictions(
            scored_db, predictions_frame({3: (True, 0.7)}), published.generation
        )
        df = analytics.retention_priority_list(snapshot=analytics.load_snapshot(AS_OF))
        assert _rows(df, "customer_id")[3]["campaign_priority"] == "Priority 2 - High Attention"


class TestStaleSnapshot:

    def test_rebuild_without_rescoring_is_stale(self, scored_db, config, analytics):
        FeatureBuilder(config).rebuild(scored_db, AS_OF)
        snap = analytics.load_snapshot(AS_OF)

        assert snap.is_stale
        with pytest.raises(StaleSnapshotError) as exc_info:
            analytics.revenue_at_risk(snapshot=snap)
        assert exc_info.value.feature_generation == 2
        assert exc_info.value.prediction_generations == [1]

    def test_transaction_queries_still_answer(self, scored_db, config, analytics):
        FeatureBuilder(config).rebuild(scored_db, AS_OF)
        snap = analytics.load_snapshot(AS_OF)
        assert len(analytics.revenue_by_city(snapshot=snap)) == 3

    def test_feature_rows_from_another_build_are_stale(self, snapshot):
        # Generation 2 published and scored, but the rows read belong to generation 1
        mixed = replace(
            snapshot,
            feature_generation=2,
            predictions=snapshot.predictions.assign(feature_generation=2),
        )
        assert mixed.prediction_generations == [2]
        assert mixed.feature_row_generations == [1]
        assert mixed.is_stale
        with pytest.raises(StaleSnapshotError) as exc_info:
            mixed.check_predictions()
        assert exc_info.value.feature_row_generations == [1]

    def test_publish_cannot_commit_while_snapshot_is_read(self, scored_db, engine, config, db_url):
        writer_engine = create_engine(db_url, connect_args={"timeout": 0.2})
        outcome = {}

        def publish_new_generation():
            session = Session(writer_engine)
            try:
                session.add(Order(
                    order_id=99999, customer_id=1, order_date=date(2024, 6, 29),
                    payment_method="UPI", order_value=500.0,
                ))
                session.commit()
                build = FeatureBuilder(config).rebuild(session, AS_OF)
                PredictionStore().upsert_predictions(session, predictions_frame(), build.generation)
                outcome["committed"] = True
            except OperationalError:
                session.rollback()
                outcome["committed"] = False
            finally:
                session.close()

        analytics = AnalyticsEngine(
            engine, config, loader=InterleavingLoader(config, after_features=publish_new_generation)
        )
        try:
            snap = analytics.load_snapshot(AS_OF)
        finally:
            writer_engine.dispose()

        assert outcome == {"committed": False}
        assert snap.feature_generation == 1
        assert snap.feature_row_generations == [1]
        assert snap.prediction_generations == [1]
        assert not snap.is_stale
        assert analytics.revenue_at_risk(snapshot=snap)["total_revenue"] == 163000.0

    def test_publish_after_snapshot_read_goes_through(self, scored_db, config, analytics):
        analytics.load_snapshot(AS_OF)
        assert FeatureBuilder(config).rebuild(scored_db, AS_OF).generation == 2

    def test_queries_never_mutate(self, analytics, snapshot):
        customers = snapshot.tables.customers.copy()
        features = snapshot.features.copy()
        for query in QUERIES:
            analytics.run(query, snapshot=snapshot)
        pd.testing.assert_frame_equal(snapshot.tables.customers, customers)
        pd.testing.assert_frame_equal(snapshot.features, features)
