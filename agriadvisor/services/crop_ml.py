"""
Crop recommendation, image diagnosis and yield prediction.

These are rule-based stand-ins for trained models. Recommendations score a
fixed candidate set (tomatoes, cotton, sugarcane) against the farm's
environment; diagnosis and yield prediction draw from bounded random
distributions around agronomic reference values.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from agriadvisor.schemas.crops import (
    CropDiagnosis,
    CropRecommendation,
    FarmData,
    HarvestWindow,
    ImageAnalysisRequest,
    MarketValue,
    RecommendationSet,
    SimilarCase,
    Treatment,
    YieldPrediction,
    YieldPredictionRequest,
    YieldRange,
)
from agriadvisor.services.market import base_price
from agriadvisor.utils.kv_store import KV_KEYS, KV_TTL, KeyValueStore
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

BASE_SUITABILITY = 70
MIN_SUITABILITY = 30
MAX_SUITABILITY = 95

# Regional reference environment used when a farm does not report its own
DEFAULT_ENVIRONMENT = {
    "temperature": {"current": 28, "min": 15, "max": 42, "average": 25},
    "rainfall": {"annual": 850, "seasonal": 250, "recent": 45},
    "humidity": {"average": 65, "range": [45, 85]},
    "soilMoisture": 35,
    "soilPH": 6.8,
    "soilNutrients": {"nitrogen": 78, "phosphorus": 65, "potassium": 72, "organicMatter": 3.2},
    "elevationMeters": 560,
    "sunlightHours": 8.5,
}

MARKET_CONDITIONS = {
    "demandTrends": {"tomatoes": "high", "cotton": "medium", "sugarcane": "high", "wheat": "medium", "rice": "medium"},
    "priceVolatility": {"tomatoes": "medium", "cotton": "high", "sugarcane": "low", "wheat": "low", "rice": "low"},
    "exportOpportunities": {"tomatoes": True, "cotton": True, "sugarcane": False, "wheat": False, "rice": True},
}

# Suitability ranges: (min, max) for average temperature (°C), soil pH, annual rainfall (mm)
CROP_REQUIREMENTS = {
    "tomatoes": {"temperature": (15, 35), "ph": (6.0, 7.5), "rainfall": (400, 800)},
    "cotton": {"temperature": (18, 40), "ph": (5.5, 8.0), "rainfall": (500, 1200)},
    "sugarcane": {"temperature": (20, 45), "ph": (6.0, 8.5), "rainfall": (1000, 2000)},
}

CROP_PROFILES = {
    "tomatoes": {
        "name": "Tomatoes",
        "variety": "Roma VF",
        "base_yield": 25,
        "yield_unit": "tons/acre",
        "profit_per_acre": 85000,
        "sustainability": 75,
        "planting_window": "March 15 - April 15",
        "harvest_time": "90-100 days",
        "water_requirement": "Medium to High",
        "labor_requirement": "High",
        "risk_level": "Medium",
        "disease_resistance": "Good",
        "advantages": ["High market demand", "Good export potential", "Multiple harvests possible",
                       "Suitable soil conditions"],
        "challenges": ["Disease susceptibility", "Water intensive", "Labor intensive", "Price volatility"],
    },
    "cotton": {
        "name": "Cotton",
        "variety": "Bt Cotton",
        "base_yield": 18,
        "yield_unit": "quintals/acre",
        "profit_per_acre": 65000,
        "sustainability": 65,
        "planting_window": "April 1 - May 15",
        "harvest_time": "180-200 days",
        "water_requirement": "Medium",
        "labor_requirement": "Medium",
        "risk_level": "Medium",
        "disease_resistance": "Excellent (Bt variety)",
        "advantages": ["Pest resistant variety", "Stable long-term crop", "Good fiber quality",
                       "Export opportunities"],
        "challenges": ["Long growing period", "Input costs", "Market price fluctuations",
                       "Water management needed"],
    },
    "sugarcane": {
        "name": "Sugarcane",
        "variety": "Co 86032",
        "base_yield": 80,
        "yield_unit": "tons/acre",
        "profit_per_acre": 45000,
        "sustainability": 70,
        "planting_window": "October - March",
        "harvest_time": "12 months",
        "water_requirement": "High",
        "labor_requirement": "High",
        "risk_level": "Low",
        "disease_resistance": "Good",
        "advantages": ["Guaranteed procurement", "Stable prices", "Good for crop rotation",
                       "Multiple products (sugar, ethanol)"],
        "challenges": ["High water requirement", "Long maturity period", "Heavy machinery needed",
                       "Transport costs"],
    },
}

SOIL_SUITABILITY = {
    "clay": {"drainage": "Poor", "nutrients": "High", "workability": "Difficult"},
    "sandy": {"drainage": "Excellent", "nutrients": "Low", "workability": "Easy"},
    "loamy": {"drainage": "Good", "nutrients": "High", "workability": "Easy"},
    "black cotton": {"drainage": "Poor", "nutrients": "High", "workability": "Difficult"},
}
UNKNOWN_SOIL = {"drainage": "Unknown", "nutrients": "Unknown", "workability": "Unknown"}

CROP_DISEASES = {
    "tomatoes": [
        ("Early Blight", "Alternaria solani", ["Dark spots on leaves", "Concentric rings", "Yellowing"]),
        ("Late Blight", "Phytophthora infestans", ["Water-soaked lesions", "White fungal growth", "Fruit rot"]),
        ("Bacterial Wilt", "Ralstonia solanacearum", ["Wilting", "Yellowing", "Vascular browning"]),
    ],
    "cotton": [
        ("Bollworm", "Helicoverpa armigera", ["Holes in bolls", "Caterpillar damage", "Reduced yield"]),
        ("Fusarium Wilt", "Fusarium oxysporum", ["Yellowing leaves", "Wilting", "Vascular discoloration"]),
    ],
    "sugarcane": [
        ("Red Rot", "Colletotrichum falcatum", ["Red discoloration", "Cross-bands", "Sour smell"]),
        ("Smut", "Sporisorium scitamineum", ["Black whip-like structure", "Stunted growth"]),
    ],
}

SEVERITIES = ("Mild", "Moderate", "Severe")

TREATMENTS = [
    Treatment(type="Chemical", name="Copper-based fungicide", application="Spray every 10-14 days",
              dosage="2-3ml per liter", precautions="Use protective equipment"),
    Treatment(type="Organic", name="Neem oil solution", application="Evening spray preferred",
              dosage="5ml per liter", precautions="Test on small area first"),
    Treatment(type="Cultural", name="Improve drainage", application="Modify field preparation",
              dosage="As needed", precautions="Monitor water logging"),
]

PREVENTION_MEASURES = [
    "Maintain proper plant spacing for air circulation",
    "Remove infected plant debris regularly",
    "Use disease-free seeds/seedlings",
    "Apply balanced nutrition to boost plant immunity",
    "Monitor regularly for early detection",
    "Rotate crops to break disease cycles",
]

SIMILAR_CASES = [
    SimilarCase(location="Nashik Farm A", outcome="Successfully treated", treatment="Fungicide + cultural practices"),
    SimilarCase(location="Pune Farm B", outcome="Partially controlled", treatment="Organic approach"),
    SimilarCase(location="Regional average", outcome="85% success rate", treatment="Integrated management"),
]

BASE_YIELDS = {"tomatoes": 25, "cotton": 18, "sugarcane": 80, "wheat": 35, "rice": 40}
MATURITY_DAYS = {"tomatoes": 95, "cotton": 190, "sugarcane": 365}
READINESS_INDICATORS = {
    "tomatoes": ["Color change to red/pink", "Slight softness", "Easy separation from vine"],
    "cotton": ["Boll opening", "Fiber dryness", "Brown/black seeds"],
    "sugarcane": ["18-20% sugar content", "Dried lower leaves", "Hollow sound when tapped"],
}

YIELD_TIPS = [
    "Apply fertilizer based on soil test results",
    "Maintain optimal irrigation schedule",
    "Monitor for pests and diseases regularly",
    "Ensure proper plant spacing and training",
    "Consider using growth regulators for better fruit set",
]


def _in_range(value: float, bounds: tuple) -> bool:
    low, high = bounds
    return low <= value <= high


def calculate_suitability(crop: str, environment: Dict[str, Any], previous_crops: List[str]) -> int:
    """
    Score a crop's fit for a farm.

    Starts at 70 and adds 10 for average temperature in range, 8 for soil
    pH in range, 7 for annual rainfall in range and 5 when the crop was not
    grown last (rotation benefit). Clamped to [30, 95].
    """
    score = BASE_SUITABILITY
    requirements = CROP_REQUIREMENTS.get(crop)

    if requirements:
        if _in_range(environment["temperature"]["average"], requirements["temperature"]):
            score += 10
        if _in_range(environment["soilPH"], requirements["ph"]):
            score += 8
        if _in_range(environment["rainfall"]["annual"], requirements["rainfall"]):
            score += 7

    if crop not in {previous.strip().lower() for previous in previous_crops}:
        score += 5

    return min(MAX_SUITABILITY, max(MIN_SUITABILITY, score))


def expected_yield(crop: str, environment: Dict[str, Any]) -> str:
    profile = CROP_PROFILES[crop]
    value = profile["base_yield"]
    if environment["soilNutrients"]["nitrogen"] > 75:
        value *= 1.1
    if environment["rainfall"]["annual"] < 500:
        value *= 0.9
    if environment["temperature"]["average"] > 35:
        value *= 0.95
    return f"{round(value)} {profile['yield_unit']}"


def profit_margin(crop: str, farm_size: float) -> str:
    total = CROP_PROFILES[crop]["profit_per_acre"] * farm_size
    return f"₹{round(total / 1000)}K"


def sustainability_score(crop: str, environment: Dict[str, Any]) -> int:
    score = CROP_PROFILES[crop]["sustainability"]
    if environment["soilNutrients"]["organicMatter"] > 3:
        score += 5
    if environment["rainfall"]["annual"] > 800:
        score += 3
    return min(MAX_SUITABILITY, score)


def analyze_climate(environment: Dict[str, Any]) -> Dict[str, str]:
    average = environment["temperature"]["average"]
    return {
        "temperatureSuitability": "Good" if 15 <= average <= 40 else "Moderate",
        "rainfallAdequacy": "Adequate" if environment["rainfall"]["annual"] >= 400 else "Insufficient",
        "humidityLevel": "High" if environment["humidity"]["average"] > 70 else "Moderate",
    }


def fallback_recommendations(now: datetime) -> RecommendationSet:
    return RecommendationSet(
        recommendations=[CropRecommendation(
            name="Mixed Farming",
            suitability_score=75,
            expected_yield="Variable",
            profit_margin="₹50K per acre",
            sustainability_score=80,
            advantages=["Risk distribution", "Soil health", "Steady income"],
            challenges=["Management complexity", "Market access"],
        )],
        analysis_factors={
            "environmental": {"status": "Limited data available"},
            "market": {"status": "Using historical averages"},
        },
        confidence_score=65,
        last_updated=now,
    )


def prognosis(severity: str) -> str:
    if severity == "Mild":
        return "Excellent - Early intervention can fully control"
    if severity == "Moderate":
        return "Good - Treatable with proper management"
    return "Fair - Requires intensive treatment and monitoring"


class CropAdvisor:
    """Crop recommendations (cached per user), diagnosis and yield prediction."""

    def __init__(
        self,
        store: KeyValueStore,
        recommendation_ttl: int = KV_TTL["recommendations"],
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.recommendation_ttl = recommendation_ttl
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def environment_for(self, farm: FarmData) -> Dict[str, Any]:
        # TODO: derive from WeatherService indices once farms carry a resolvable location
        return DEFAULT_ENVIRONMENT

    def _score_candidates(self, farm: FarmData, environment: Dict[str, Any]) -> List[CropRecommendation]:
        candidates = []
        for crop, profile in CROP_PROFILES.items():
            candidates.append(CropRecommendation(
                name=profile["name"],
                variety=profile["variety"],
                suitability_score=calculate_suitability(crop, environment, farm.previous_crops),
                expected_yield=expected_yield(crop, environment),
                profit_margin=profit_margin(crop, farm.farm_size),
                sustainability_score=sustainability_score(crop, environment),
                planting_window=profile["planting_window"],
                harvest_time=profile["harvest_time"],
                water_requirement=profile["water_requirement"],
                labor_requirement=profile["labor_requirement"],
                risk_level=profile["risk_level"],
                disease_resistance=profile["disease_resistance"],
                market_demand=MARKET_CONDITIONS["demandTrends"].get(crop),
                advantages=profile["advantages"],
                challenges=profile["challenges"],
            ))
        candidates.sort(key=lambda rec: rec.suitability_score, reverse=True)
        return candidates

    def recommend(self, farm: FarmData) -> RecommendationSet:
        """
        Ranked crop recommendations for a farm.

        When the farm carries a ``userId`` the result is cached for that
        user. Scoring errors produce the "Mixed Farming" fallback.
        """
        now = self.clock()
        try:
            environment = self.environment_for(farm)
            recommendations = self._score_candidates(farm, environment)
            result = RecommendationSet(
                recommendations=recommendations,
                analysis_factors={
                    "environmental": environment,
                    "market": MARKET_CONDITIONS,
                    "soil": SOIL_SUITABILITY.get((farm.soil_type or "").lower(), UNKNOWN_SOIL),
                    "climate": analyze_climate(environment),
                },
                confidence_score=round(
                    sum(rec.suitability_score for rec in recommendations) / len(recommendations)
                ),
                last_updated=now,
            )
        except (ArithmeticError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Crop recommendation failed: {e}. Returning fallback recommendations.")
            return fallback_recommendations(now)

        if farm.user_id:
            self.store.set(
                KV_KEYS["recommendations"](farm.user_id),
                result.to_store(),
                ttl=self.recommendation_ttl,
            )
        return result

    def cached_recommendations(self, user_id: str) -> Optional[RecommendationSet]:
        stored = self.store.get(KV_KEYS["recommendations"](user_id))
        return RecommendationSet.model_validate(stored) if stored else None

    def diagnose(self, request: ImageAnalysisRequest) -> CropDiagnosis:
        """Simulated image diagnosis drawn from the crop's known diseases."""
        crop = request.crop_type.lower()
        diseases = CROP_DISEASES.get(crop, CROP_DISEASES["tomatoes"])
        name, pathogen, symptoms = self.rng.choice(diseases)
        severity = self.rng.choice(SEVERITIES)

        logger.info(f"Diagnosed {name} ({severity}) on {crop} image")
        return CropDiagnosis(
            diagnosis=name,
            pathogen=pathogen,
            symptoms=symptoms,
            confidence=round(85 + self.rng.random() * 10, 1),
            severity=severity,
            affected_area=self.rng.randint(10, 49),
            treatments=TREATMENTS,
            prevention=PREVENTION_MEASURES,
            prognosis=prognosis(severity),
            similar_cases=SIMILAR_CASES,
            timestamp=self.clock(),
        )

    def predict_yield(self, request: YieldPredictionRequest) -> YieldPrediction:
        """
        Expected yield = base yield × soil × weather × management × farm size.

        Factors are drawn from 0.9-1.1 (soil), 0.85-1.15 (weather) and
        0.95-1.05 (management). The range is ±20 % of the expectation.
        """
        crop = request.crop_type.lower()
        soil = 0.9 + self.rng.random() * 0.2
        weather = 0.85 + self.rng.random() * 0.3
        management = 0.95 + self.rng.random() * 0.1

        total = BASE_YIELDS.get(crop, 20) * soil * weather * management * request.farm_size
        harvest_date = request.planting_date + timedelta(days=MATURITY_DAYS.get(crop, 100))
        price = base_price(crop)

        return YieldPrediction(
            expected_yield=round(total, 2),
            yield_range=YieldRange(min=round(total * 0.8, 2), max=round(total * 1.2, 2)),
            confidence=round(82 + self.rng.random() * 10, 1),
            factors={
                "weather": round(weather, 3),
                "soil": round(soil, 3),
                "management": round(management, 3),
            },
            recommendations=YIELD_TIPS,
            harvest_window=HarvestWindow(
                estimated_date=harvest_date,
                window=f"{harvest_date.strftime('%a %b %d %Y')} ± 7 days",
                readiness_indicators=READINESS_INDICATORS.get(
                    crop, ["Consult agricultural expert for harvest timing"]
                ),
            ),
            market_value=MarketValue(price_per_unit=price, total_value=round(total * price)),
            timestamp=self.clock(),
        )
