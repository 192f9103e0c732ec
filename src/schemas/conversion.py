from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Channel = Literal["r", "g", "b"]
WeightValue = Annotated[Decimal, Field(allow_inf_nan=False)]


class Technique(StrEnum):
    AVERAGE = "average"
    LUMINOSITY = "luminosity"
    LIGHTNESS = "lightness"
    DESATURATION = "desaturation"
    SINGLE_CHANNEL = "single_channel"
    WEIGHTED = "weighted"


class Weights(BaseModel):
    model_config = ConfigDict(frozen=True)

    wr: WeightValue = Decimal("0.2126")
    wg: WeightValue = Decimal("0.7152")
    wb: WeightValue = Decimal("0.0722")

    def query_value(self) -> str:
        return ",".join(format(value, "f") for value in (self.wr, self.wg, self.wb))


class ConversionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    technique: Technique
    channel: Channel | None = None
    weights: Weights | None = None

    @model_validator(mode="after")
    def _check_parameters(self) -> "ConversionRequest":
        if self.technique is Technique.SINGLE_CHANNEL:
            if self.channel is None:
                raise ValueError("single_channel requires a channel")
        elif self.channel is not None:
            raise ValueError(f"{self.technique} does not take a channel")
        if self.technique is Technique.WEIGHTED:
            if self.weights is None:
                raise ValueError("weighted requires weights")
        elif self.weights is not None:
            raise ValueError(f"{self.technique} does not take weights")
        return self

    def query_params(self) -> dict[str, str]:
        params = {"technique": self.technique.value}
        if self.channel is not None:
            params["channel"] = self.channel
        if self.weights is not None:
            params["weights"] = self.weights.query_value()
        return params


class ConversionOptions(BaseModel):
    technique: Technique = Technique.AVERAGE
    channel: Channel = "r"
    weights: Weights = Field(default_factory=Weights)

    def to_request(self) -> ConversionRequest:
        if self.technique is Technique.SINGLE_CHANNEL:
            return ConversionRequest(technique=self.technique, channel=self.channel)
        if self.technique is Technique.WEIGHTED:
            return ConversionRequest(technique=self.technique, weights=self.weights)
        return ConversionRequest(technique=self.technique)
