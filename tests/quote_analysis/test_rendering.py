from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.models import DocumentType, ScoreColor
from verifdevis.quote_analysis.rendering import get_banner, render, render_site_context
from verifdevis.quote_analysis.scoring.scorer import Scorer
from verifdevis.quote_analysis.types import MarketPriceLine, PaymentTerms, PriceBand, SiteContext, SiteInfo

from tests.utils import make_extracted, make_verification

TOITURE_PRICE = MarketPriceLine(
    job_type="toiture",
    label="Toiture",
    zone="grande_ville",
    zone_coefficient=1.1,
    zone_is_default=False,
    available=True,
    band=PriceBand(min=44, avg=66, max=88),
    unit="m2",
    quote_amount_ht=6000,
    quote_unit_price=60,
    position="within",
)


def render_quote(extracted, verification, market_prices=(), **kwargs):
    scoring = Scorer(AnalysisConfig()).score(extracted, verification, list(market_prices))
    return render(extracted, verification, scoring, list(market_prices), **kwargs)


def test_render_clean_quote():
    rendered = render_quote(make_extracted(), make_verification(), [TOITURE_PRICE], descriptions=["Remplacement des tuiles"])

    assert rendered.score == ScoreColor.VERT
    assert rendered.alertes == []
    assert all(line.startswith(("✓ ", "ℹ️ ", "📍 ")) for line in rendered.points_ok)
    assert "✓ Entreprise identifiée dans les registres officiels : TOITURES MARTIN" in rendered.points_ok
    assert rendered.recommandations[0].startswith("📊 Aucun point de vigilance")
    assert rendered.banner is None
    assert rendered.types_travaux == [
        {
            "categorie": "toiture",
            "libelle": "Réfection de toiture tuiles",
            "description": "Remplacement des tuiles",
            "quantite": 100,
            "unite": "m2",
            "montant_ht": 6000,
            "score_prix": ScoreColor.VERT,
            "fourchette_min": 44,
            "fourchette_max": 88,
            "zone_type": "Grande ville / métropole",
            "explication": "Prix dans la fourchette de marché",
        }
    ]


def test_render_orders_critical_before_warnings():
    extracted = make_extracted(payment=PaymentTerms(deposit_pct=40, modes=("especes",)))

    rendered = render_quote(extracted, make_verification(age_years=1))

    assert rendered.score == ScoreColor.ROUGE
    assert rendered.alertes[0] == "🔴 Paiement en espèces explicitement demandé sur le devis"
    assert [line[0] for line in rendered.alertes] == ["🔴", "🟠", "🟠"]
    assert rendered.recommandations[0].startswith("📊 1 point critique")
    assert all(line.startswith("💡 ") for line in rendered.recommandations[1:])


def test_render_uses_given_resume():
    rendered = render_quote(make_extracted(), make_verification(), resume="Devis de toiture.")

    assert rendered.resume == "Devis de toiture."


def test_render_types_travaux_without_reference_price():
    rendered = render_quote(make_extracted(), make_verification())

    row = rendered.types_travaux[0]
    assert row["description"] == "Réfection de toiture tuiles"
    assert row["score_prix"] is None
    assert row["zone_type"] is None


def test_render_diagnostic_banner():
    rendered = render_quote(make_extracted(document_type=DocumentType.DIAGNOSTIC), make_verification())

    assert rendered.banner["mode"] == "diagnostic"
    assert get_banner(DocumentType.DEVIS) is None


def test_render_site_context_unknown_location():
    lines = render_site_context(None, make_extracted())

    assert lines == [
        "📍 Patrimoine / ABF : INCONNU — l'adresse du chantier n'a pas pu être géolocalisée, "
        "la vérification n'a pas pu être réalisée"
    ]
    assert render_site_context(None, make_extracted(site=SiteInfo())) == []


def test_render_site_context():
    context = SiteContext(
        commune="Vaulx-en-Velin",
        risks_checked=True,
        risks=["Inondation", "Retrait-gonflement des argiles"],
        seismic_zone="2 - Faible",
        heritage_checked=True,
        heritage_status="non_detecte",
    )

    rendered = render_quote(make_extracted(), make_verification(site_context=context))

    assert rendered.points_ok[-3:] == [
        "📍 Risques naturels identifiés sur la commune (Vaulx-en-Velin) : Inondation, Retrait-gonflement des argiles",
        "📍 Zone sismique : 2 - Faible",
        "📍 Patrimoine / ABF : NON DÉTECTÉ — aucune zone patrimoniale n'a été détectée autour de "
        "l'adresse du chantier à partir des données publiques disponibles",
    ]
    assert rendered.site_context["commune"] == "Vaulx-en-Velin"
