"""CLI entry point for adrecon."""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Tuple

import click
import pandas as pd

from adrecon import __version__
from adrecon.campaign_builder import (
    CampaignCreationError,
    CampaignSpecError,
    create_whatsapp_campaign,
    load_campaign_spec,
    validate_spec,
)
from adrecon.config import AppConfig, ConfigError, load_config
from adrecon.config_meta_ads import MetaAdsConfigError, load_meta_ads_config
from adrecon.connectors.google_sheets import (
    GoogleSheetsConfigError,
    push_frame,
    push_tabular_file,
)
from adrecon.connectors.meta_ads import (
    MetaAdsConnectorError,
    check_page,
    fetch_ad_lifetime,
    init_api,
    list_pages,
    open_ad,
    open_ad_account,
    open_page,
    open_user,
    search_ad_library,
)
from adrecon.pipeline import (
    make_rate_provider,
    pull_ad_rows,
    report_frame,
    run_ads_report,
    run_campaign_diagnostic,
    run_product_report,
    run_sales_lookup,
    write_report_outputs,
)
from adrecon.sources.base import SalesSourceError

CONFIG_ERRORS = (ConfigError, MetaAdsConfigError, GoogleSheetsConfigError)


def _load(config_path: str) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc))


def _meta_config(cfg: AppConfig):
    try:
        return load_meta_ads_config(cfg.meta.accounts, cfg.meta.api_version)
    except MetaAdsConfigError as exc:
        raise click.ClickException(str(exc))


def _echo_errors(errors) -> None:
    if not errors:
        return
    click.echo("")
    click.echo(f"⚠️  {len(errors)} error(s):", err=True)
    for e in errors:
        click.echo(f"   - {e}", err=True)


def _echo_summary(summary: dict, paths: dict) -> None:
    click.echo("")
    click.echo("✅ Report complete!")
    for section in summary["ranges"]:
        total = section["total"]
        click.echo(
            f"   {section['name']:<10} rows={len(section['rows']):<4} "
            f"spend+tax=${total.spend_with_tax:,.2f}  revenue=${total.revenue_usd:,.2f}  "
            f"ROAS={total.roas:.2f}"
        )
    click.echo(f"   Files written: {paths['csv']}, {paths['markdown']}")
    cstats = summary.get("cache_stats") or {}
    if cstats:
        click.echo(
            f"   Rate cache: hits={cstats.get('hits', 0)}  misses={cstats.get('misses', 0)}"
        )
    _echo_errors(summary.get("errors"))


def _maybe_push(summary: dict, spreadsheet_id: str | None, worksheet: str) -> None:
    if not spreadsheet_id:
        return
    try:
        n = push_frame(spreadsheet_id, worksheet, report_frame(summary["rows"]))
    except GoogleSheetsConfigError as exc:
        raise click.ClickException(str(exc))
    except Exception as exc:
        raise click.ClickException(f"Failed to push to Google Sheets: {exc}")
    click.echo(f"✅ Pushed {n} rows to worksheet '{worksheet}'.")


@click.group()
@click.version_option(version=__version__, prog_name="adrecon")
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def cli(log_level: str):
    """Reconcile Meta Ads spend with spreadsheet sales."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


_range_option = click.option(
    "--range",
    "ranges",
    multiple=True,
    help="Range name (TODAY, YESTERDAY, LAST_7D, MAXIMUM...). Repeatable; default from config.",
)
_country_option = click.option("--country", default="", help="Country filter, e.g. PERU")
_out_option = click.option("--out", "output_dir", default=None, help="Output directory")
_config_option = click.option(
    "--config", "config_path", default="config.yaml", help="Config file path"
)
_push_options = [
    click.option("--push_spreadsheet_id", default=None, help="Also push rows to this sheet"),
    click.option("--push_worksheet", default="Reporte", show_default=True),
]


def _with(options):
    def deco(f):
        for opt in reversed(options):
            f = opt(f)
        return f

    return deco


@cli.command()
@_range_option
@_country_option
@click.option("--product", default="", help="Only campaigns whose name contains this text")
@_out_option
@_config_option
@_with(_push_options)
def report(
    ranges: Tuple[str, ...],
    country: str,
    product: str,
    output_dir: str | None,
    config_path: str,
    push_spreadsheet_id: str | None,
    push_worksheet: str,
):
    """Per-ad report: spend, revenue, ROAS, messages and sales per range."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    output_dir = output_dir or cfg.report.output_dir

    click.echo(f"📊 Ranges: {', '.join(ranges or cfg.report.ranges)}")
    click.echo(f"🌎 Country: {country or 'all'}")
    try:
        summary = run_ads_report(
            cfg, meta_cfg, ranges=list(ranges) or None, country_filter=country, product_filter=product
        )
    except CONFIG_ERRORS as exc:
        raise click.ClickException(str(exc))
    except (ValueError, MetaAdsConnectorError) as exc:
        raise click.ClickException(f"Report failed: {exc}")

    paths = write_report_outputs(summary, output_dir)
    _echo_summary(summary, paths)
    _maybe_push(summary, push_spreadsheet_id, push_worksheet)


@cli.command()
@_range_option
@_country_option
@_out_option
@_config_option
@_with(_push_options)
def products(
    ranges: Tuple[str, ...],
    country: str,
    output_dir: str | None,
    config_path: str,
    push_spreadsheet_id: str | None,
    push_worksheet: str,
):
    """Per-product report grouped by the configured product rules."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    output_dir = output_dir or str(Path(cfg.report.output_dir) / "products")

    try:
        summary = run_product_report(
            cfg, meta_cfg, ranges=list(ranges) or None, country_filter=country
        )
    except CONFIG_ERRORS as exc:
        raise click.ClickException(str(exc))
    except (ValueError, MetaAdsConnectorError) as exc:
        raise click.ClickException(f"Product report failed: {exc}")

    paths = write_report_outputs(summary, output_dir)
    _echo_summary(summary, paths)
    _maybe_push(summary, push_spreadsheet_id, push_worksheet)


@cli.group("sales")
def sales_group():
    """Sales spreadsheet queries."""
    pass


@sales_group.command("lookup")
@click.argument("query")
@_config_option
def sales_lookup(query: str, config_path: str):
    """Total sales for a product name (add a country to narrow it down)."""
    cfg = _load(config_path)
    try:
        result = run_sales_lookup(cfg, query)
    except CONFIG_ERRORS as exc:
        raise click.ClickException(str(exc))
    except SalesSourceError as exc:
        raise click.ClickException(f"Sales lookup failed: {exc}")

    if not result["per_country"]:
        click.echo(f"No sales found for \"{query}\".")
        _echo_errors(result["errors"])
        return

    click.echo(f"🛒 Sales for \"{query}\"")
    for country, b in sorted(result["per_country"].items()):
        click.echo(
            f"   {country:<15} sales={b['sales']:<5} "
            f"{b['currency']} {b['total_local']:,.2f}  (USD {b['total_usd']:,.2f} @ {b['rate']:g})"
        )
    click.echo(f"   TOTAL           sales={result['sales']:<5} USD {result['total_usd']:,.2f}")
    _echo_errors(result["errors"])


@cli.group("rates")
def rates_group():
    """Exchange rate commands."""
    pass


@rates_group.command("show")
@click.option("--date", "day", default=None, help="Historical date YYYY-MM-DD")
@click.option("--currency", default=None, help="Currency code, e.g. PEN")
@_config_option
def rates_show(day: str | None, currency: str | None, config_path: str):
    """Show the current USD table, or one historical rate."""
    cfg = _load(config_path)
    provider = make_rate_provider(cfg)

    if day:
        if not currency:
            raise click.ClickException("--currency is required with --date.")
        try:
            when = date.fromisoformat(day)
        except ValueError:
            raise click.ClickException(f"Invalid date: {day} (expected YYYY-MM-DD)")
        rate = provider.get_historical_rate(when, currency)
        click.echo(f"1 USD = {rate:g} {currency.upper()} on {when.isoformat()}")
        return

    table = provider.get_exchange_rates()
    codes = sorted(set(cfg.country_currency.values()) | {"USD"})
    if currency:
        codes = [currency.upper()]
    for code in codes:
        click.echo(f"   {code}: {table.get(code, 1.0):g}")


@cli.group("meta-ads")
def meta_ads_group():
    """Meta Ads connector commands."""
    pass


@meta_ads_group.command("pull")
@click.option("--range", "range_name", default="last_30d", show_default=True)
@click.option(
    "--out",
    "out_path",
    default="output/ads.csv",
    show_default=True,
    help="Output CSV path",
)
@_config_option
def meta_ads_pull(range_name: str, out_path: str, config_path: str):
    """Pull enriched ad-level insights into a CSV."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    try:
        rows, errors = pull_ad_rows(cfg, meta_cfg, range_name)
    except (ValueError, MetaAdsConnectorError) as exc:
        raise click.ClickException(f"Meta Ads pull failed: {exc}")

    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame([r.to_dict() for r in rows]).to_csv(out, index=False)
    click.echo(f"✅ Pulled {len(rows)} rows from Meta Ads into {out_path}")
    _echo_errors(errors)


@meta_ads_group.command("ad")
@click.argument("ad_id")
@_config_option
def meta_ads_ad(ad_id: str, config_path: str):
    """Lifetime spend, reach and unique link clicks for one ad."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    try:
        row = fetch_ad_lifetime(ad_id, open_ad(ad_id, init_api(meta_cfg)))
    except MetaAdsConnectorError as exc:
        raise click.ClickException(f"Ad {ad_id}: {exc}")

    if row is None:
        click.echo(f"No insights found for ad {ad_id} (wrong id, another account, or no delivery).")
        return
    click.echo(f"💰 Ad {row.ad_id} (lifetime)")
    click.echo(f"   Campaign: {row.campaign_name or 'N/A'}")
    click.echo(f"   Ad set:   {row.adset_name or 'N/A'}")
    click.echo(f"   Ad:       {row.ad_name or 'N/A'}")
    click.echo(f"   Spend:    ${row.spend:,.2f}")
    click.echo(f"   Impressions={row.impressions:,}  reach={row.reach:,}  unique link clicks={row.unique_clicks:,}")


@meta_ads_group.command("library")
@click.argument("term")
@click.option("--country", required=True, help="2-letter country code, e.g. PE")
@click.option("--limit", default=50, show_default=True, type=int)
@click.option("--out", "out_path", default=None, help="Also write all results to this CSV")
@_config_option
def meta_ads_library(term: str, country: str, limit: int, out_path: str | None, config_path: str):
    """Search competitors' public ads in the Meta Ad Library."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    try:
        ads = search_ad_library(init_api(meta_cfg), term, country, limit=limit)
    except (ValueError, MetaAdsConnectorError) as exc:
        raise click.ClickException(str(exc))

    if not ads:
        click.echo(f"No ads found for \"{term}\" in {country.upper()}.")
        return
    active = sum(1 for a in ads if a.active)
    click.echo(f"📚 {len(ads)} ads for \"{term}\" in {country.upper()} ({active} active)")
    for i, ad in enumerate(ads[:5], 1):
        state = "🟢 active" if ad.active else "⚪ finished"
        click.echo(f"   {i}. {ad.page_name or 'N/A'} {state}  id={ad.id}  start={ad.start_time or 'N/A'}")
    if out_path:
        out = Path(out_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame([a.to_dict() for a in ads]).to_csv(out, index=False)
        click.echo(f"✅ Wrote {len(ads)} rows to {out_path}")


@cli.group("campaign")
def campaign_group():
    """Campaign creation commands."""
    pass


@campaign_group.command("create")
@click.option("--spec", "spec_path", required=True, help="Campaign YAML file")
@click.option("--dry-run", is_flag=True, help="Validate only; create nothing")
@_config_option
def campaign_create(spec_path: str, dry_run: bool, config_path: str):
    """Create a click-to-WhatsApp campaign in the first configured account."""
    try:
        spec = validate_spec(load_campaign_spec(spec_path))
    except CampaignSpecError as exc:
        raise click.ClickException(str(exc))

    if dry_run:
        click.echo(f"✅ Spec valid: {spec.name} ({', '.join(spec.country_codes())})")
        return

    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    account_id = meta_cfg.ad_account_ids[0]
    try:
        api = init_api(meta_cfg)
        ids = create_whatsapp_campaign(spec, open_ad_account(account_id, api))
    except (MetaAdsConnectorError, CampaignCreationError) as exc:
        raise click.ClickException(str(exc))

    click.echo(f"✅ Campaign created in {account_id} ({spec.status.upper()})")
    for key, value in ids.items():
        click.echo(f"   {key}: {value}")


@campaign_group.command("pages")
@_config_option
def campaign_pages(config_path: str):
    """List the Facebook Pages (and their Page IDs) the token can use."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    try:
        pages = list_pages(open_user(init_api(meta_cfg)))
    except MetaAdsConnectorError as exc:
        raise click.ClickException(str(exc))

    if not pages:
        click.echo("No pages linked to this token. Copy the Page ID from the page's About section.")
        return
    click.echo("📄 Facebook pages:")
    for i, page in enumerate(pages, 1):
        access = "✅ access ok" if page["has_access"] else "⚠️  no page access"
        click.echo(f"   {i}. {page['name']}  page_id={page['id']}  {access}")


@campaign_group.command("check-page")
@click.argument("page_id")
@_config_option
def campaign_check_page(page_id: str, config_path: str):
    """Check that a Page ID exists and is reachable with the token."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    try:
        page = check_page(page_id, open_page(page_id, init_api(meta_cfg)))
    except MetaAdsConnectorError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"✅ Page ID valid: {page['name']} ({page['id']})")


@campaign_group.command("diagnose")
@click.option("--limit", default=25, show_default=True, type=int, help="Campaigns per account")
@_config_option
def campaign_diagnose(limit: int, config_path: str):
    """Show which product rule each campaign name matches."""
    cfg = _load(config_path)
    meta_cfg = _meta_config(cfg)
    try:
        rows, errors = run_campaign_diagnostic(cfg, meta_cfg, limit=limit)
    except MetaAdsConnectorError as exc:
        raise click.ClickException(str(exc))

    if not cfg.products:
        click.echo("⚠️  No product rules configured; every campaign is unmatched.")
    for row in rows:
        product = row["product"] or "(no match)"
        shadowed = f"  also: {', '.join(row['also_matches'])}" if row["also_matches"] else ""
        click.echo(f"   [{row['account']}] {row['campaign']} [{row['status']}] -> {product}{shadowed}")
    click.echo(f"🔍 {len(rows)} campaigns checked, {sum(1 for r in rows if not r['product'])} unmatched")
    _echo_errors(errors)


@cli.group("sheets")
def sheets_group():
    """Google Sheets helper commands."""
    pass


@sheets_group.command("push")
@click.option("--spreadsheet_id", required=True, help="Target Google Sheet ID")
@click.option("--worksheet", required=True, help="Worksheet/tab name")
@click.option("--input", "input_path", required=True, help="Input CSV or TSV path")
def sheets_push(spreadsheet_id: str, worksheet: str, input_path: str):
    """Push a local CSV/TSV (e.g. report.csv) to Google Sheets."""
    try:
        n = push_tabular_file(spreadsheet_id, worksheet, input_path)
    except GoogleSheetsConfigError as exc:
        raise click.ClickException(str(exc))
    except Exception as exc:
        raise click.ClickException(f"Failed to push to Google Sheets: {exc}")

    click.echo(
        f"✅ Pushed {n} rows to worksheet '{worksheet}' in spreadsheet {spreadsheet_id}."
    )


if __name__ == "__main__":
    cli()
