"""
HuggingFace Client - Local model loading and inference wrapper

Responsibilities:
- Load model with optional 4-bit NF4 quantization
- Format prompts with the tokenizer chat template (system + user)
- Generate text completions
- Generate JSON-formatted completions with repair

Design principles:
- Dependency injection (no singleton)
- Fail fast on critical errors (CUDA OOM, missing CUDA)
- Graceful fallback when a chat template rejects the system role
"""

import logging
import time

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    BitsAndBytesConfig
)

from unidialog.utils.helpers import extract_json_object

logger = logging.getLogger(__name__)


class HuggingFaceClient:
    """Wrapper for HuggingFace model inference"""

    def __init__(self, model_name, load_in_4bit=True, device="cuda"):
        """
        Initialize model and tokenizer

        Args:
            model_name (str): HuggingFace model identifier
            load_in_4bit (bool): Use 4-bit quantization (CUDA only)
            device (str): Device to use ("cuda" or "cpu")

        Raises:
            RuntimeError: If CUDA requested but not available
            Exception: If model loading fails
        """
        self.model_name = model_name
        self.device = device

        if device == "cuda" and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        logger.info(f"Loading model: {model_name} (4-bit={load_in_4bit}, device={device})")

        quantization_config = None
        if load_in_4bit and device == "cuda":
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True
            )

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
        except Exception as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise

        try:
            self.model = AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                device_map="auto" if device == "cuda" else None,
                torch_dtype=torch.bfloat16 if device == "cuda" else torch.float32
            )
        except torch.cuda.OutOfMemoryError:
            logger.error("CUDA Out of Memory during model loading")
            raise
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise

        if device == "cuda":
            allocated = torch.cuda.memory_allocated() / 1e9
            logger.info(f"GPU memory allocated: {allocated:.2f}GB")

        self.has_chat_template = getattr(self.tokenizer, 'chat_template', None) is not None

        self.model.eval()
        logger.info("HuggingFace client initialized successfully")

    def is_loaded(self):
        return self.model is not None and self.tokenizer is not None

    def format_prompt(self, prompt, system=None):
        """
        Wrap a prompt for an instruction-tuned model.

        Priority:
        1. Tokenizer chat template with system + user messages
        2. Chat template with the system text folded into the user message
           (templates such as Mistral's reject the system role)
        3. Plain [INST] ... [/INST]

        Args:
            prompt (str): User prompt
            system (str): Optional system instruction

        Returns:
            str: Formatted prompt
        """
        merged = f"{system}\n\n{prompt}" if system else prompt

        if self.has_chat_template:
            attempts = []
            if system:
                attempts.append([{"role": "system", "content": system}, {"role": "user", "content": prompt}])
            attempts.append([{"role": "user", "content": merged}])

            for messages in attempts:
                try:
                    return self.tokenizer.apply_chat_template(
                        messages,
                        tokenize=False,
                        add_generation_prompt=True
                    )
                except Exception as e:
                    logger.debug(f"Chat template rejected {len(messages)}-message prompt: {e}")

            logger.warning("Tokenizer chat template failed, falling back to [INST] formatting")

        return f"[INST] {merged} [/INST]"

    def generate(self, prompt, max_tokens=256, temperature=0.3, system=None):
        """
        Generate text completion from prompt

        Args:
            prompt (str): Input prompt
            max_tokens (int): Maximum tokens to generate
            temperature (float): Sampling temperature (0.0 = greedy)
            system (str): Optional system instruction

        Returns:
            str: Generated text

        Raises:
            RuntimeError: If the model is not loaded
            torch.cuda.OutOfMemoryError: If GPU runs out of memory
        """
        if not self.is_loaded():
            raise RuntimeError("Model not loaded")

        start_time = time.time()

        formatted = self.format_prompt(prompt, system)
        inputs = self.tokenizer(formatted, return_tensors="pt", add_special_tokens=False)
        if self.device == "cuda":
            inputs = inputs.to("cuda")

        prompt_tokens = inputs.input_ids.shape[1]

        generation_kwargs = {
            "max_new_tokens": max_tokens,
            "do_sample": temperature > 0,
            "pad_token_id": self.tokenizer.eos_token_id
        }
        if temperature > 0:
            generation_kwargs["temperature"] = temperature

        try:
            with torch.no_grad():
                outputs = self.model.generate(
                    inputs.input_ids,
                    attention_mask=inputs.attention_mask,
                    **generation_kwargs
                )
        except torch.cuda.OutOfMemoryError:
            logger.error(f"CUDA OOM during generation (prompt tokens: {prompt_tokens}, max new: {max_tokens})")
            raise

        generated_ids = outputs[0][prompt_tokens:]
        generated_text = self.tokenizer.decode(generated_ids, skip_special_tokens=True).strip()

        elapsed_ms = (time.time() - start_time) * 1000
        logger.debug(f"Generated {len(generated_ids)} tokens in {elapsed_ms:.0f}ms")

        return generated_text

    def generate_json(self, prompt, max_tokens=256, temperature=0.0, system=None):
        """
        Generate JSON-formatted completion with repair attempts

        Note: This returns a string, not parsed JSON. Caller must parse it.
        """
        result = self.generate(
            prompt=prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system
        )

        return self._repair_json(result)

    def _repair_json(self, text):
        """
        Strip code fences and trailing chatter, close unbalanced braces

        Args:
            text (str): Raw model output

        Returns:
            str: Cleaned JSON string (unchanged text when no brace is found)
        """
        return extract_json_object(text)
